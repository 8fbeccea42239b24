"""State coordination engine."""

from .backends import build_lock_backend, build_lock_manager, build_state_store, ensure_backends
from .coordinator import AppliedResult, Plan, StateCoordinator
from .graph import compute_diff, resolve_outputs, topological_order, validate_graph
from .lock import LockBackend, LockManager, MemoryLockBackend, default_holder
from .provisioner import NullProvisioner, Provisioner, RecordingProvisioner, load_provisioner
from .source import load_desired_graph
from .store import MemoryStateStore, StateStore

__all__ = [
    "AppliedResult",
    "LockBackend",
    "LockManager",
    "MemoryLockBackend",
    "MemoryStateStore",
    "NullProvisioner",
    "Plan",
    "Provisioner",
    "RecordingProvisioner",
    "StateCoordinator",
    "StateStore",
    "build_lock_backend",
    "build_lock_manager",
    "build_state_store",
    "compute_diff",
    "default_holder",
    "ensure_backends",
    "load_desired_graph",
    "load_provisioner",
    "resolve_outputs",
    "topological_order",
    "validate_graph",
]
