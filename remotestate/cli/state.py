import time
from typing import Optional

import click
from rich.table import Column, Table, box

from .. import terminal
from ..api.services import Services
from ..engine import (
    AppliedResult,
    NullProvisioner,
    Plan,
    Provisioner,
    StateCoordinator,
    default_holder,
    load_desired_graph,
    load_provisioner,
)
from ..exceptions import DeadlineExceededError, LockedError, PartialApplyError
from ..models import DesiredGraph
from ..terminal import pluralize
from . import extraclick
from .extraclick import ClickCommonGroup


@click.group(cls=ClickCommonGroup)
def common(**_):
    pass


def print_plan(plan: Plan) -> None:
    if not plan.has_changes:
        terminal.success(f"No changes. {plan.path} is up to date at version {plan.version}.")
        return

    terminal.print(terminal.operations_table(plan.operations))
    summary = plan.summary()
    terminal.header(
        f"Plan: {summary['create']} to create, {summary['update']} to update, "
        f"{summary['delete']} to delete."
    )


@common.command(
    help="Show the changes an apply would make, without locking.",
)
@click.argument("path", required=True)
@extraclick.desired_file_option
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON.")
@extraclick.with_error_handling
@extraclick.pass_services
def plan(services: Services, path: str, desired_file: str, as_json: bool):
    desired = load_desired_graph(desired_file)
    result = services.coordinator.plan(path, desired)

    if as_json:
        terminal.print_json(
            {
                "path": result.path,
                "version": result.version,
                "summary": result.summary(),
                "operations": [op.to_dict() for op in result.operations],
            }
        )
        return

    print_plan(result)


def apply_with_retry(
    coordinator: StateCoordinator,
    path: str,
    desired: DesiredGraph,
    provisioner: Provisioner,
    holder: str,
    timeout: Optional[float],
    lock_timeout: float,
) -> AppliedResult:
    """
    Apply, retrying lock contention with exponential backoff.

    Args:
        lock_timeout: Seconds to keep retrying a locked path (0 fails fast)
    """
    give_up = time.monotonic() + lock_timeout
    delay = 0.5

    while True:
        try:
            return coordinator.apply(path, desired, provisioner, holder=holder, timeout=timeout)
        except LockedError as e:
            remaining = give_up - time.monotonic()
            if remaining <= 0:
                raise
            terminal.detail(f"{e.message}; retrying in {min(delay, remaining):.1f}s")
            time.sleep(min(delay, remaining))
            delay = min(delay * 2, 10.0)


@common.command(
    help="Apply a desired graph to a state path.",
    epilog="""
    Examples:

      # Record desired state without touching infrastructure
      remotestate apply prod/services/webserver-cluster -f cluster.yaml

      # Use a custom provisioner and wait up to a minute for the lock
      remotestate apply stage/data-stores/mysql -f mysql.yaml \\
          --provisioner mytools.aws:Provisioner --lock-timeout 60
      \b
    """,
)
@click.argument("path", required=True)
@extraclick.desired_file_option
@click.option(
    "--provisioner",
    "provisioner_reference",
    default=None,
    help="Provisioner as 'module:attribute'. Defaults to recording desired state only.",
)
@click.option("--holder", default=None, help="Lock holder identity.")
@click.option("--timeout", type=float, default=None, help="Stop starting operations after N seconds.")
@click.option(
    "--lock-timeout",
    type=float,
    default=0.0,
    help="Seconds to retry while the path is locked.",
)
@extraclick.with_error_handling
@extraclick.pass_services
def apply(
    services: Services,
    path: str,
    desired_file: str,
    provisioner_reference: Optional[str],
    holder: Optional[str],
    timeout: Optional[float],
    lock_timeout: float,
):
    desired = load_desired_graph(desired_file)
    provisioner = load_provisioner(provisioner_reference) if provisioner_reference else NullProvisioner()

    try:
        result = apply_with_retry(
            services.coordinator,
            path,
            desired,
            provisioner,
            holder or default_holder(),
            timeout,
            lock_timeout,
        )
    except (PartialApplyError, DeadlineExceededError) as e:
        terminal.warn(f"State saved at version {e.version}; inspect before re-applying.")
        terminal.error(e.message)
        return

    if not result.changed:
        terminal.success(f"No changes. {result.path} is up to date at version {result.version}.")
    else:
        n, s = pluralize(result.operations)
        terminal.success(f"Applied {n} operation{s} to {result.path}; now at version {result.version}.")

    if result.outputs:
        terminal.header("Outputs")
        terminal.print_json(result.outputs)


@common.command(help="Print the state document stored at a path.")
@click.argument("path", required=True)
@click.option("--version", "version", type=int, default=None, help="Read a historical version.")
@extraclick.with_error_handling
@extraclick.pass_services
def show(services: Services, path: str, version: Optional[int]):
    if version is None:
        document = services.store.read(path)
    else:
        document = services.store.read_version(path, version)
    terminal.print_json(document.model_dump(mode="json"))


@common.command(help="List retained versions of a state path.")
@click.argument("path", required=True)
@extraclick.with_error_handling
@extraclick.pass_services
def versions(services: Services, path: str):
    history = services.store.list_versions(path)

    table = Table(
        Column("Version", justify="right"),
        Column("Serial", justify="right"),
        Column("Fencing Token", justify="right"),
        Column("Written"),
        box=box.SIMPLE,
    )
    for entry in history:
        table.add_row(
            str(entry.version),
            str(entry.serial),
            "-" if entry.fencing_token is None else str(entry.fencing_token),
            terminal.relative_time(entry.timestamp),
        )

    table.add_section()
    n, s = pluralize(history)
    table.add_row(f"[bold]{n} version{s}[/bold]")
    terminal.print(table)
