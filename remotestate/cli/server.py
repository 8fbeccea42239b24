from typing import Optional

import click

from .. import terminal
from ..config import Settings
from ..engine import build_lock_manager, ensure_backends
from ..worker import LockSweeper
from . import extraclick
from .extraclick import ClickCommonGroup


@click.group(cls=ClickCommonGroup)
def common(**_):
    pass


@common.command(help="Create the configured remote backend resources (S3 bucket, DynamoDB table).")
@extraclick.pass_settings
@extraclick.with_error_handling
def init(settings: Settings):
    ensure_backends(settings)
    terminal.success(
        f"Backends ready: state={settings.state_backend}, locks={settings.lock_backend}."
    )


@common.command(help="Run the HTTP API.")
@click.option("--host", default=None, help="Bind address. Defaults to settings.")
@click.option("--port", type=int, default=None, help="Bind port. Defaults to settings.")
@extraclick.pass_settings
def serve(settings: Settings, host: Optional[str], port: Optional[int]):
    import uvicorn

    uvicorn.run(
        "remotestate.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        workers=settings.api_workers,
        log_level=settings.log_level.lower(),
    )


@common.command(help="Delete expired locks, once or on an interval.")
@click.option("--once", is_flag=True, help="Run a single sweep and exit.")
@click.option("--interval", type=float, default=None, help="Seconds between sweeps.")
@extraclick.pass_settings
@extraclick.with_error_handling
def sweep(settings: Settings, once: bool, interval: Optional[float]):
    sweeper = LockSweeper(
        build_lock_manager(settings), interval or settings.sweep_interval_seconds
    )

    if once:
        removed = sweeper.run_once()
        terminal.success(f"Removed {removed} expired lock{'' if removed == 1 else 's'}.")
        return

    sweeper.start()
