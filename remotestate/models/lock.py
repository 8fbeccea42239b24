"""Lock entry record."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LockEntry:
    """
    Ephemeral record guarding exclusive access to a state path.

    Entries are never mutated in place; a renewal replaces the entry with
    one carrying a new fencing token.
    """

    path: str
    holder: str
    acquired_at: datetime
    expires_at: datetime
    fencing_token: int

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "holder": self.holder,
            "acquired_at": self.acquired_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "fencing_token": self.fencing_token,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockEntry":
        return cls(
            path=data["path"],
            holder=data["holder"],
            acquired_at=datetime.fromisoformat(data["acquired_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            fencing_token=int(data["fencing_token"]),
        )
