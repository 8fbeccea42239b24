"""Domain models for remote state coordination."""

from .lock import LockEntry, utcnow
from .operation import Action, Operation
from .state import (
    DesiredGraph,
    ResourceRecord,
    StateDocument,
    StateVersion,
    normalize_path,
)

__all__ = [
    "Action",
    "DesiredGraph",
    "LockEntry",
    "Operation",
    "ResourceRecord",
    "StateDocument",
    "StateVersion",
    "normalize_path",
    "utcnow",
]
