"""Diff operations handed to a provisioner."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .state import ResourceRecord


class Action(str, Enum):
    """Kind of change applied to a resource."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Operation:
    """
    One ordered step of a diff.

    For create and update, record is the desired record. For delete it is
    the record currently stored. previous holds the stored record for
    update and delete.
    """

    action: Action
    record: ResourceRecord
    previous: Optional[ResourceRecord] = None

    @property
    def resource_id(self) -> str:
        return self.record.id

    def __str__(self) -> str:
        return f"{self.action.value}({self.record.id})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "resource_id": self.record.id,
            "attributes": self.record.attributes,
            "previous": self.previous.attributes if self.previous else None,
        }
