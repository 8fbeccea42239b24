"""Versioned state storage."""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from ..exceptions import StateConflictError, StateNotFoundError
from ..models import StateDocument, StateVersion, normalize_path, utcnow


logger = structlog.get_logger()


class StateStore(ABC):
    """
    Durable, versioned storage of one state document per path.

    Writes are optimistic: a write names the version it was computed from and
    is rejected when the stored version has moved on.
    """

    def __init__(self, retain_versions: Optional[int] = None):
        if retain_versions is not None and retain_versions < 1:
            raise ValueError("retain_versions must be at least 1")
        self.retain_versions = retain_versions

    @abstractmethod
    def read(self, path: str) -> StateDocument:
        """
        Read the current document at a path.

        Raises:
            StateNotFoundError: If nothing was ever written at the path
        """

    @abstractmethod
    def read_version(self, path: str, version: int) -> StateDocument:
        """
        Read a retained historical version.

        Raises:
            StateNotFoundError: If the version was never written or was pruned
        """

    @abstractmethod
    def write(
        self,
        path: str,
        document: StateDocument,
        expected_version: int,
        fencing_token: Optional[int] = None,
    ) -> int:
        """
        Write a new document if the stored version equals expected_version.

        Args:
            path: State path
            document: Document to store
            expected_version: Version the document was computed from (0 for a new path)
            fencing_token: Lock token the writer holds

        Returns:
            The new version

        Raises:
            StateConflictError: On a version, fencing or lineage mismatch
        """

    @abstractmethod
    def list_versions(self, path: str) -> List[StateVersion]:
        """List retained versions of a path, oldest first."""

    def read_or_empty(self, path: str) -> StateDocument:
        try:
            return self.read(path)
        except StateNotFoundError:
            return StateDocument()

    def _prepare(
        self,
        path: str,
        head: Optional[StateDocument],
        document: StateDocument,
        expected_version: int,
        fencing_token: Optional[int],
    ) -> StateDocument:
        """Check a write against the stored head and build the document to persist."""
        current_version = head.version if head else 0

        if current_version != expected_version:
            raise StateConflictError(
                path, f"expected version {expected_version}, stored version is {current_version}"
            )

        if head is not None:
            if document.lineage != head.lineage:
                raise StateConflictError(
                    path, f"lineage {document.lineage} does not match stored {head.lineage}"
                )
            if (
                fencing_token is not None
                and head.fencing_token is not None
                and fencing_token < head.fencing_token
            ):
                raise StateConflictError(
                    path,
                    f"fencing token {fencing_token} is older than stored {head.fencing_token}",
                )

        update = {"version": current_version + 1}
        if fencing_token is not None:
            update["fencing_token"] = fencing_token
        return document.model_copy(update=update, deep=True)

    def _expired_versions(self, versions: List[int]) -> List[int]:
        if self.retain_versions is None or len(versions) <= self.retain_versions:
            return []
        return sorted(versions)[: len(versions) - self.retain_versions]


class MemoryStateStore(StateStore):
    """In-process state store."""

    def __init__(
        self,
        retain_versions: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(retain_versions)
        self.clock = clock
        self._lock = threading.Lock()
        # path -> version -> (timestamp, serialized document)
        self._history: Dict[str, Dict[int, Tuple[datetime, str]]] = {}
        self._current: Dict[str, int] = {}

    def read(self, path: str) -> StateDocument:
        path = normalize_path(path)
        with self._lock:
            if path not in self._current:
                raise StateNotFoundError(path)
            _, body = self._history[path][self._current[path]]
        return StateDocument.model_validate_json(body)

    def read_version(self, path: str, version: int) -> StateDocument:
        path = normalize_path(path)
        with self._lock:
            entry = self._history.get(path, {}).get(version)
        if entry is None:
            raise StateNotFoundError(path, version)
        return StateDocument.model_validate_json(entry[1])

    def write(
        self,
        path: str,
        document: StateDocument,
        expected_version: int,
        fencing_token: Optional[int] = None,
    ) -> int:
        path = normalize_path(path)
        with self._lock:
            head = None
            if path in self._current:
                head = StateDocument.model_validate_json(
                    self._history[path][self._current[path]][1]
                )

            stored = self._prepare(path, head, document, expected_version, fencing_token)

            history = self._history.setdefault(path, {})
            history[stored.version] = (self.clock(), stored.model_dump_json())
            self._current[path] = stored.version

            for version in self._expired_versions(list(history)):
                del history[version]

        logger.debug("State written", path=path, version=stored.version, backend="memory")
        return stored.version

    def list_versions(self, path: str) -> List[StateVersion]:
        path = normalize_path(path)
        with self._lock:
            history = dict(self._history.get(path, {}))

        versions = []
        for version in sorted(history):
            timestamp, body = history[version]
            document = StateDocument.model_validate_json(body)
            versions.append(
                StateVersion(
                    version=version,
                    timestamp=timestamp,
                    serial=document.serial,
                    fencing_token=document.fencing_token,
                )
            )
        return versions
