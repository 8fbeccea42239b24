import functools
from typing import Callable, List

import click
import yaml

from .. import terminal
from ..api.services import Services
from ..config import Settings
from ..engine import StateCoordinator, build_lock_manager, build_state_store
from ..exceptions import RemoteStateError

CLICK_CONTEXT_SETTINGS = dict(
    help_option_names=["-h", "--help"],
    show_default=True,
)


class ClickCommonGroup(click.Group):
    def list_commands(self, ctx) -> List[str]:
        return list(self.commands)


def get_settings(ctx: click.Context) -> Settings:
    settings = ctx.find_object(Settings)
    if settings is None:
        settings = Settings()
        ctx.obj = settings
    return settings


def pass_settings(func: Callable) -> Callable:
    """Passes the active Settings as the first argument."""

    @click.pass_context
    @functools.wraps(func)
    def decorator(ctx: click.Context, *args, **kwargs):
        return func(get_settings(ctx), *args, **kwargs)

    return decorator


def pass_services(func: Callable) -> Callable:
    """Builds store, locks and coordinator from Settings and passes them first."""

    @click.pass_context
    @functools.wraps(func)
    def decorator(ctx: click.Context, *args, **kwargs):
        settings = get_settings(ctx)
        store = build_state_store(settings)
        locks = build_lock_manager(settings)
        services = Services(store=store, locks=locks, coordinator=StateCoordinator(store, locks))
        return func(services, *args, **kwargs)

    return decorator


desired_file_option = click.option(
    "-f",
    "--file",
    "desired_file",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
    help="Desired graph as JSON or YAML.",
)


def with_error_handling(func: Callable) -> Callable:
    """Prints domain and input errors and exits with status 1."""

    @functools.wraps(func)
    def decorator(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except RemoteStateError as e:
            terminal.error(e.message)
        except (ValueError, yaml.YAMLError) as e:
            terminal.error(str(e))

    return decorator
