"""Request and response schemas for the HTTP API."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models import LockEntry, Operation


class WriteResponse(BaseModel):
    """Response after writing a state document."""

    path: str
    version: int


class LockRequest(BaseModel):
    """Request to acquire a lock."""

    holder: str = Field(..., min_length=1, max_length=255)
    ttl_seconds: Optional[float] = Field(None, gt=0)


class RenewRequest(BaseModel):
    """Request to renew a lock."""

    holder: str = Field(..., min_length=1, max_length=255)
    fencing_token: int
    ttl_seconds: Optional[float] = Field(None, gt=0)


class ReleaseRequest(BaseModel):
    """Request to release a lock."""

    holder: str = Field(..., min_length=1, max_length=255)
    fencing_token: int


class LockInfo(BaseModel):
    """Live lock entry."""

    path: str
    holder: str
    fencing_token: int
    acquired_at: datetime
    expires_at: datetime

    @classmethod
    def from_entry(cls, entry: LockEntry) -> "LockInfo":
        return cls(
            path=entry.path,
            holder=entry.holder,
            fencing_token=entry.fencing_token,
            acquired_at=entry.acquired_at,
            expires_at=entry.expires_at,
        )


class ForceUnlockResponse(BaseModel):
    """Response after an administrative unlock."""

    path: str
    removed: Optional[LockInfo] = None


class PlanResponse(BaseModel):
    """Dry-run diff for a desired graph."""

    path: str
    version: int
    summary: Dict[str, int]
    operations: List[Dict[str, Any]]

    @classmethod
    def from_operations(
        cls, path: str, version: int, summary: Dict[str, int], operations: List[Operation]
    ) -> "PlanResponse":
        return cls(
            path=path,
            version=version,
            summary=summary,
            operations=[op.to_dict() for op in operations],
        )
