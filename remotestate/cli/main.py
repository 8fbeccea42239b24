import shutil
from types import ModuleType
from typing import Any, Optional

import click

from ..config import Settings
from ..logging import setup_logging
from . import lock, server, state
from .extraclick import CLICK_CONTEXT_SETTINGS

click.formatting.FORCED_WIDTH = shutil.get_terminal_size().columns


class CLI:
    """
    The CLI application.

    Commands are registered from modules exposing a click.Group named
    "common"; its commands become top-level commands.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        context_settings: Optional[dict] = None,
    ) -> None:
        self.settings = Settings() if settings is None else settings

        if context_settings is None:
            context_settings = CLICK_CONTEXT_SETTINGS

        self.common_group = click.CommandCollection(
            sources=[],
            context_settings=context_settings,
            help="Versioned remote state with fenced distributed locks.",
        )

    def __call__(self, **kwargs) -> None:
        self.common_group.main(prog_name="remotestate", obj=self.settings, **kwargs)

    def register(self, module: ModuleType) -> None:
        if hasattr(module, "common"):
            self.common_group.add_source(module.common)

    def load_version(self, package_name: Optional[str] = None):
        """
        Adds a version parameter to the top-level command.

        Args:
            package_name: Name of Python package. Defaults to remotestate.
        """
        option = click.version_option(package_name=package_name or "remotestate")
        self.common_group = option(self.common_group)


def load_cli(**kwargs: Any) -> CLI:
    cli = CLI(**kwargs)
    cli.register(state)
    cli.register(lock)
    cli.register(server)

    cli.load_version()

    return cli


def main() -> None:
    cli = load_cli()
    setup_logging(cli.settings.log_level)
    cli()


if __name__ == "__main__":
    main()
