"""Read-diff-apply-write coordination over a locked state path."""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..exceptions import (
    DeadlineExceededError,
    LockExpiredError,
    NotHolderError,
    PartialApplyError,
    StorageUnavailableError,
)
from ..models import (
    Action,
    DesiredGraph,
    Operation,
    ResourceRecord,
    StateDocument,
    normalize_path,
)
from .graph import compute_diff, resolve_outputs, validate_graph
from .lock import LockManager, default_holder
from .provisioner import Provisioner
from .store import StateStore


logger = structlog.get_logger()


@dataclass
class Plan:
    """Result of a dry-run diff."""

    path: str
    version: int
    operations: List[Operation]
    current: StateDocument

    @property
    def has_changes(self) -> bool:
        return bool(self.operations)

    def summary(self) -> Dict[str, int]:
        counts = {action.value: 0 for action in Action}
        for operation in self.operations:
            counts[operation.action.value] += 1
        return counts


@dataclass
class AppliedResult:
    """Result of a successful apply."""

    path: str
    version: int
    outputs: Dict[str, Any]
    operations: List[Operation] = field(default_factory=list)
    changed: bool = True


@dataclass
class _Lease:
    path: str
    holder: str
    token: int
    renewed_at: float


class StateCoordinator:
    """
    Applies a desired graph to one state path under its lock.

    The coordinator owns neither the store nor the locks; both are borrowed
    for the duration of one apply.
    """

    def __init__(
        self,
        store: StateStore,
        locks: LockManager,
        lock_ttl: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize coordinator.

        Args:
            store: State store
            locks: Lock manager guarding the same paths
            lock_ttl: Lease taken for each apply (defaults to the manager's TTL)
            monotonic: Clock for deadlines and lease renewal
        """
        self.store = store
        self.locks = locks
        self.lock_ttl = lock_ttl if lock_ttl is not None else locks.default_ttl
        self.monotonic = monotonic

    def plan(self, path: str, desired: DesiredGraph) -> Plan:
        """
        Compute the operations an apply would run, without locking.

        Args:
            path: State path
            desired: Desired graph

        Returns:
            Plan with ordered operations
        """
        path = normalize_path(path)
        current = self.store.read_or_empty(path)
        operations = compute_diff(current, desired)
        return Plan(path=path, version=current.version, operations=operations, current=current)

    def apply(
        self,
        path: str,
        desired: DesiredGraph,
        provisioner: Provisioner,
        holder: Optional[str] = None,
        deadline: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> AppliedResult:
        """
        Apply a desired graph to a state path.

        Args:
            path: State path
            desired: Desired graph
            provisioner: Callable performing each operation
            holder: Lock holder identity (defaults to one per call)
            deadline: Clock value after which no further
                      operation is started
            timeout: Seconds from now, combined with deadline

        Returns:
            AppliedResult with new version and outputs

        Raises:
            GraphError: If the desired graph is invalid (before any side effect)
            LockedError: If another holder has the path locked
            PartialApplyError: If an operation failed; state reflects the successes
            DeadlineExceededError: If the deadline passed mid-apply
            StateConflictError: If the stored version moved under the lock
        """
        path = normalize_path(path)
        validate_graph(desired.resources)

        if timeout is not None:
            timeout_deadline = self.monotonic() + timeout
            deadline = timeout_deadline if deadline is None else min(deadline, timeout_deadline)

        holder = holder or default_holder()
        token = self.locks.acquire(path, holder, self.lock_ttl)
        lease = _Lease(path=path, holder=holder, token=token, renewed_at=self.monotonic())

        try:
            return self._apply_locked(path, desired, provisioner, lease, deadline)
        finally:
            self._release(lease)

    def _apply_locked(
        self,
        path: str,
        desired: DesiredGraph,
        provisioner: Provisioner,
        lease: _Lease,
        deadline: Optional[float],
    ) -> AppliedResult:
        current = self.store.read_or_empty(path)
        operations = compute_diff(current, desired)

        logger.info(
            "Applying state",
            path=path,
            version=current.version,
            operations=len(operations),
            fencing_token=lease.token,
        )

        records: Dict[str, ResourceRecord] = {r.id: r for r in current.resources}
        applied: List[Operation] = []

        for index, operation in enumerate(operations):
            if deadline is not None and self.monotonic() >= deadline:
                version = self._persist_partial(path, current, desired, records, applied, lease)
                logger.warning("Apply deadline exceeded", path=path, index=index, version=version)
                raise DeadlineExceededError(path, index, version)

            try:
                self._maybe_renew(lease)
            except LockExpiredError:
                self._persist_partial(path, current, desired, records, applied, lease)
                raise

            try:
                result = provisioner(operation)
            except Exception as e:
                logger.error(
                    "Provisioner failed",
                    path=path,
                    index=index,
                    operation=str(operation),
                    error=str(e),
                    exc_info=True,
                )
                version = self._persist_partial(path, current, desired, records, applied, lease)
                raise PartialApplyError(path, index, operation, e, version) from e

            _record_result(records, operation, result)
            applied.append(operation)
            logger.debug("Operation applied", path=path, index=index, operation=str(operation))

        # Dependency-only changes need no provisioner call
        for record in desired.resources:
            stored = records[record.id]
            if set(stored.depends_on) != set(record.depends_on):
                records[record.id] = stored.model_copy(update={"depends_on": record.depends_on})

        document = _build_document(current, desired, records)

        if not applied and document.content_equals(current):
            logger.info("State unchanged", path=path, version=current.version)
            return AppliedResult(
                path=path,
                version=current.version,
                outputs=current.outputs,
                operations=[],
                changed=False,
            )

        version = self.store.write(path, document, current.version, lease.token)

        logger.info(
            "State applied",
            path=path,
            version=version,
            operations=len(applied),
            fencing_token=lease.token,
        )
        return AppliedResult(
            path=path,
            version=version,
            outputs=document.outputs,
            operations=applied,
            changed=True,
        )

    def _persist_partial(
        self,
        path: str,
        current: StateDocument,
        desired: DesiredGraph,
        records: Dict[str, ResourceRecord],
        applied: List[Operation],
        lease: _Lease,
    ) -> int:
        """Write a document reflecting only the operations that succeeded."""
        if not applied:
            return current.version

        document = _build_document(current, desired, records)
        version = self.store.write(path, document, current.version, lease.token)
        logger.warning(
            "Partial state saved",
            path=path,
            version=version,
            applied=len(applied),
            fencing_token=lease.token,
        )
        return version

    def _maybe_renew(self, lease: _Lease) -> None:
        if self.monotonic() - lease.renewed_at < self.lock_ttl / 2:
            return
        lease.token = self.locks.renew(lease.path, lease.holder, lease.token, self.lock_ttl)
        lease.renewed_at = self.monotonic()

    def _release(self, lease: _Lease) -> None:
        # Release failures must not mask the apply outcome; the lease
        # expires on its own.
        try:
            self.locks.release(lease.path, lease.holder, lease.token)
        except NotHolderError:
            logger.warning(
                "Lock lost before release",
                path=lease.path,
                holder=lease.holder,
                fencing_token=lease.token,
            )
        except StorageUnavailableError as e:
            logger.error(
                "Failed to release lock",
                path=lease.path,
                holder=lease.holder,
                fencing_token=lease.token,
                error=str(e),
            )


def _record_result(
    records: Dict[str, ResourceRecord],
    operation: Operation,
    result: Optional[ResourceRecord],
) -> None:
    if operation.action == Action.DELETE:
        records.pop(operation.resource_id, None)
        return

    record = result if result is not None else operation.record
    records[operation.resource_id] = record.model_copy(
        update={"id": operation.resource_id, "depends_on": operation.record.depends_on}
    )


def _build_document(
    current: StateDocument,
    desired: DesiredGraph,
    records: Dict[str, ResourceRecord],
) -> StateDocument:
    # Desired order first, then anything still tracked from before
    ordered = [records[r.id] for r in desired.resources if r.id in records]
    seen = {r.id for r in ordered}
    ordered.extend(records[r.id] for r in current.resources if r.id in records and r.id not in seen)

    return StateDocument(
        version=current.version,
        serial=current.serial + 1,
        lineage=current.lineage,
        fencing_token=current.fencing_token,
        resources=ordered,
        outputs=resolve_outputs(desired.outputs, ordered),
    )
