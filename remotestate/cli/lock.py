import click
import structlog

from .. import terminal
from ..api.services import Services
from . import extraclick
from .extraclick import ClickCommonGroup


logger = structlog.get_logger()


@click.group(cls=ClickCommonGroup)
def common(**_):
    pass


@common.command(name="lock-info", help="Show the live lock on a state path.")
@click.argument("path", required=True)
@extraclick.with_error_handling
@extraclick.pass_services
def lock_info(services: Services, path: str):
    entry = services.locks.get(path)
    if entry is None:
        terminal.detail(f"{path} is not locked.")
        return

    terminal.print_json(entry.to_dict())
    terminal.detail(
        f"Acquired {terminal.relative_time(entry.acquired_at)}, "
        f"expires {terminal.relative_time(entry.expires_at)}."
    )


@common.command(
    name="force-unlock",
    help="Remove the lock on a state path regardless of its holder.",
    epilog="""
    Only use this when the holder is known to be gone. If it is still
    applying, its next write may overwrite a newer state.
    \b
    """,
)
@click.argument("path", required=True)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@extraclick.with_error_handling
@extraclick.pass_services
def force_unlock(services: Services, path: str, yes: bool):
    entry = services.locks.get(path)
    if entry is not None and not yes:
        click.confirm(
            f"{path} is locked by {entry.holder} (token {entry.fencing_token}). Remove it?",
            abort=True,
        )

    removed = services.locks.force_unlock(path)
    if removed is None:
        terminal.detail(f"{path} was not locked.")
        return

    logger.warning(
        "Force unlock from CLI",
        path=removed.path,
        holder=removed.holder,
        fencing_token=removed.fencing_token,
    )
    terminal.success(f"Removed lock held by {removed.holder} on {removed.path}.")
