"""Fenced, TTL-bounded locks over a compare-and-set backend."""

import os
import socket
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, Optional

import structlog

from ..exceptions import LockedError, LockExpiredError, NotHolderError
from ..models import LockEntry, normalize_path, utcnow


logger = structlog.get_logger()


def default_holder() -> str:
    """Identifier for the current process, unique per call."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class LockBackend(ABC):
    """Consistent key-value store with atomic compare-and-set on lock entries."""

    name = "lock"

    @abstractmethod
    def get(self, path: str) -> Optional[LockEntry]:
        """Return the stored entry for a path, expired or not."""

    @abstractmethod
    def compare_and_set(
        self, path: str, expected_token: Optional[int], entry: Optional[LockEntry]
    ) -> bool:
        """
        Atomically replace the entry for a path.

        Args:
            path: Lock path
            expected_token: Fencing token of the entry expected to be stored,
                            or None if no entry is expected
            entry: New entry, or None to delete

        Returns:
            True if the swap happened
        """

    @abstractmethod
    def next_token(self, path: str) -> int:
        """Atomically issue the next fencing token for a path."""

    @abstractmethod
    def entries(self) -> Iterable[LockEntry]:
        """Iterate over all stored entries."""


class MemoryLockBackend(LockBackend):
    """In-process lock backend."""

    name = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, LockEntry] = {}
        self._tokens: Dict[str, int] = {}

    def get(self, path: str) -> Optional[LockEntry]:
        with self._lock:
            return self._entries.get(path)

    def compare_and_set(
        self, path: str, expected_token: Optional[int], entry: Optional[LockEntry]
    ) -> bool:
        with self._lock:
            current = self._entries.get(path)
            current_token = current.fencing_token if current else None
            if current_token != expected_token:
                return False
            if entry is None:
                self._entries.pop(path, None)
            else:
                self._entries[path] = entry
            return True

    def next_token(self, path: str) -> int:
        with self._lock:
            token = self._tokens.get(path, 0) + 1
            self._tokens[path] = token
            return token

    def entries(self) -> Iterable[LockEntry]:
        with self._lock:
            return list(self._entries.values())


class LockManager:
    """
    Grants at most one live lock per state path.

    Every grant is a single compare-and-set against the entry read just
    before it. Expired entries are treated as absent, so a crashed holder
    is recovered from once its TTL runs out.
    """

    def __init__(
        self,
        backend: LockBackend,
        default_ttl: float = 300.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.backend = backend
        self.default_ttl = default_ttl
        self.clock = clock

    def _ttl(self, ttl: Optional[float]) -> timedelta:
        seconds = self.default_ttl if ttl is None else ttl
        if seconds <= 0:
            raise ValueError("ttl must be positive")
        return timedelta(seconds=seconds)

    def acquire(self, path: str, holder: str, ttl: Optional[float] = None) -> int:
        """Acquire the lock on a path and return its fencing token."""
        return self.acquire_entry(path, holder, ttl).fencing_token

    def acquire_entry(self, path: str, holder: str, ttl: Optional[float] = None) -> LockEntry:
        """
        Acquire the lock on a path.

        Re-acquiring a lock already held by the same holder extends it and
        issues a new fencing token.

        Args:
            path: State path
            holder: Identifier of the acquiring client
            ttl: Lease duration in seconds (defaults to the manager's TTL)

        Returns:
            The granted entry

        Raises:
            LockedError: If another holder has a live lock on the path
        """
        path = normalize_path(path)
        lease = self._ttl(ttl)
        current = self.backend.get(path)
        now = self.clock()

        if current and not current.is_expired(now) and current.holder != holder:
            raise LockedError(path, current.holder)

        token = self.backend.next_token(path)
        entry = LockEntry(
            path=path,
            holder=holder,
            acquired_at=now,
            expires_at=now + lease,
            fencing_token=token,
        )
        expected = current.fencing_token if current else None

        if not self.backend.compare_and_set(path, expected, entry):
            latest = self.backend.get(path)
            raise LockedError(path, latest.holder if latest else None)

        if current and current.holder != holder:
            logger.warning(
                "Took over expired lock",
                path=path,
                holder=holder,
                previous_holder=current.holder,
                previous_token=current.fencing_token,
            )

        logger.info("Lock acquired", path=path, holder=holder, fencing_token=token)
        return entry

    def release(self, path: str, holder: str, fencing_token: int) -> None:
        """
        Release a lock.

        Raises:
            NotHolderError: If the stored entry is missing or does not carry
                            this holder and token
        """
        path = normalize_path(path)
        current = self.backend.get(path)

        if current is None or current.holder != holder or current.fencing_token != fencing_token:
            raise NotHolderError(path, holder)

        if not self.backend.compare_and_set(path, fencing_token, None):
            raise NotHolderError(path, holder)

        logger.info("Lock released", path=path, holder=holder, fencing_token=fencing_token)

    def renew(
        self, path: str, holder: str, fencing_token: int, ttl: Optional[float] = None
    ) -> int:
        """Extend a live lock and return its new fencing token."""
        return self.renew_entry(path, holder, fencing_token, ttl).fencing_token

    def renew_entry(
        self, path: str, holder: str, fencing_token: int, ttl: Optional[float] = None
    ) -> LockEntry:
        """
        Extend a live lock.

        Returns:
            The renewed entry with its new fencing token

        Raises:
            LockExpiredError: If the lock expired or no longer carries this token
        """
        path = normalize_path(path)
        lease = self._ttl(ttl)
        current = self.backend.get(path)
        now = self.clock()

        if (
            current is None
            or current.is_expired(now)
            or current.holder != holder
            or current.fencing_token != fencing_token
        ):
            raise LockExpiredError(path, holder, fencing_token)

        token = self.backend.next_token(path)
        entry = LockEntry(
            path=path,
            holder=holder,
            acquired_at=current.acquired_at,
            expires_at=now + lease,
            fencing_token=token,
        )
        if not self.backend.compare_and_set(path, fencing_token, entry):
            raise LockExpiredError(path, holder, fencing_token)

        logger.debug("Lock renewed", path=path, holder=holder, fencing_token=token)
        return entry

    def get(self, path: str) -> Optional[LockEntry]:
        """Return the live entry for a path, or None if unlocked or expired."""
        path = normalize_path(path)
        current = self.backend.get(path)
        if current is None or current.is_expired(self.clock()):
            return None
        return current

    def validate(self, path: str, holder: str, fencing_token: int) -> None:
        """
        Check that a holder still owns a live lock with this token.

        Raises:
            LockExpiredError: If it does not
        """
        current = self.get(path)
        if current is None or current.holder != holder or current.fencing_token != fencing_token:
            raise LockExpiredError(normalize_path(path), holder, fencing_token)

    def force_unlock(self, path: str) -> Optional[LockEntry]:
        """
        Delete the entry for a path regardless of holder or token.

        Returns:
            The removed entry, or None if the path was not locked
        """
        path = normalize_path(path)

        while True:
            current = self.backend.get(path)
            if current is None:
                logger.info("Force unlock requested on unlocked path", path=path)
                return None
            if self.backend.compare_and_set(path, current.fencing_token, None):
                break

        logger.warning(
            "Lock forcibly removed",
            path=path,
            holder=current.holder,
            fencing_token=current.fencing_token,
        )
        return current

    def sweep(self) -> int:
        """
        Delete expired entries.

        Returns:
            Number of entries removed
        """
        now = self.clock()
        removed = 0

        for entry in self.backend.entries():
            if not entry.is_expired(now):
                continue
            if self.backend.compare_and_set(entry.path, entry.fencing_token, None):
                removed += 1
                logger.info(
                    "Expired lock swept",
                    path=entry.path,
                    holder=entry.holder,
                    fencing_token=entry.fencing_token,
                )

        return removed
