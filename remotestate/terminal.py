import datetime
import sys
from typing import Any, Iterable, Sequence, Tuple

from rich.console import Console
from rich.table import Column, Table, box
from rich.text import Text

from .models import Action, Operation

_console = Console()

ACTION_SYMBOLS = {
    Action.CREATE: ("+", "green"),
    Action.UPDATE: ("~", "yellow"),
    Action.DELETE: ("-", "red"),
}


def _say(text: str, style: str = "") -> None:
    _console.print(Text(text, style=style))


def header(text: str, subtext: str = "") -> None:
    _console.print(f"[bold #4CCACC]=> {text}[/bold #4CCACC]", subtext)


def print(*objects: Any, **kwargs: Any) -> None:
    _console.print(*objects, **kwargs)


def print_json(data: Any) -> None:
    _console.print_json(data=data, indent=2, default=str)


def detail(text: str) -> None:
    _say(text, "dim")


def success(text: str) -> None:
    _say(text, "bold green")


def warn(text: str) -> None:
    _say(text, "bold yellow")


def error(text: str, exit_code: int = 1) -> None:
    """Print an error and exit, unless exit_code is 0."""
    _say(text, "bold red")
    if exit_code:
        sys.exit(exit_code)


def operations_table(operations: Iterable[Operation]) -> Table:
    table = Table(Column(""), Column("Resource"), Column("Action"), box=box.SIMPLE)
    for operation in operations:
        symbol, style = ACTION_SYMBOLS[operation.action]
        table.add_row(f"[{style}]{symbol}[/{style}]", operation.resource_id, operation.action.value)
    return table


def relative_time(d: datetime.datetime) -> str:
    """Describe a timestamp relative to now, e.g. "3 minutes ago" or "in 2 hours"."""
    if d.tzinfo is None:
        d = d.replace(tzinfo=datetime.timezone.utc)

    delta = d - datetime.datetime.now(datetime.timezone.utc)
    seconds = abs(delta.total_seconds())

    if seconds < 60:
        return "just now"
    if seconds >= 86400:
        return d.strftime("%b %d, %Y %H:%M")

    amount, unit = (int(seconds // 3600), "hour") if seconds >= 3600 else (int(seconds // 60), "minute")
    span = f"{amount} {unit}{'' if amount == 1 else 's'}"
    return f"in {span}" if delta.total_seconds() > 0 else f"{span} ago"


def pluralize(seq: Sequence, suffix: str = "s") -> Tuple[int, str]:
    n = len(seq)
    return n, "" if n == 1 else suffix
