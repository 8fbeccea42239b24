"""State document schema."""

import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..exceptions import InvalidPathError

_SEGMENT = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._=-]*$")


def normalize_path(path: str) -> str:
    """
    Normalize a hierarchical state path.

    Surrounding slashes are stripped. Every segment must be a plain name;
    empty, relative and special-character segments are rejected.

    Args:
        path: State path, e.g. "prod/services/webserver-cluster"

    Returns:
        Normalized path

    Raises:
        InvalidPathError: If the path is empty or has an invalid segment
    """
    stripped = path.strip().strip("/")
    if not stripped:
        raise InvalidPathError(path, "path is empty")

    for segment in stripped.split("/"):
        if segment in ("", ".", ".."):
            raise InvalidPathError(path, f"segment {segment!r} is not allowed")
        if not _SEGMENT.match(segment):
            raise InvalidPathError(path, f"segment {segment!r} has invalid characters")

    return stripped


class ResourceRecord(BaseModel):
    """One tracked infrastructure object."""

    id: str = Field(..., min_length=1, description="Resource type and logical name")
    attributes: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)

    @field_validator("depends_on")
    @classmethod
    def dedupe_dependencies(cls, v: List[str]) -> List[str]:
        """dependsOn is a set; keep first occurrence order."""
        return list(dict.fromkeys(v))

    def matches(self, desired: "ResourceRecord") -> bool:
        """
        Check whether this stored record satisfies a desired record.

        Attributes recorded by the provisioner but absent from the desired
        record are ignored.
        """
        return self.attributes_match(desired) and set(self.depends_on) == set(
            desired.depends_on
        )

    def attributes_match(self, desired: "ResourceRecord") -> bool:
        return all(
            key in self.attributes and self.attributes[key] == value
            for key, value in desired.attributes.items()
        )


class StateDocument(BaseModel):
    """Serialized state of all tracked resources for one path."""

    version: int = Field(0, ge=0)
    serial: int = Field(0, ge=0)
    lineage: str = Field(default_factory=lambda: uuid.uuid4().hex)
    fencing_token: Optional[int] = None
    resources: List[ResourceRecord] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("resources")
    @classmethod
    def validate_unique_ids(cls, v: List[ResourceRecord]) -> List[ResourceRecord]:
        """Validate that resource ids are unique within the document."""
        seen = set()
        for record in v:
            if record.id in seen:
                raise ValueError(f"duplicate resource id {record.id}")
            seen.add(record.id)
        return v

    def resource_map(self) -> Dict[str, ResourceRecord]:
        return {record.id: record for record in self.resources}

    def get(self, resource_id: str) -> Optional[ResourceRecord]:
        for record in self.resources:
            if record.id == resource_id:
                return record
        return None

    def content_equals(self, other: "StateDocument") -> bool:
        """Compare tracked content, ignoring bookkeeping fields."""
        return self.resources == other.resources and self.outputs == other.outputs


class DesiredGraph(BaseModel):
    """Parsed target configuration for one state path."""

    resources: List[ResourceRecord] = Field(default_factory=list)
    outputs: Dict[str, str] = Field(
        default_factory=dict, description="Output name to '<resource id>.<attribute>' reference"
    )


class StateVersion(BaseModel):
    """One retained historical version of a path."""

    version: int
    timestamp: datetime
    serial: int = 0
    fencing_token: Optional[int] = None
