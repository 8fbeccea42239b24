"""Provisioner interface and built-in provisioners."""

import importlib
import inspect
import threading
from typing import Callable, List, Optional, Protocol, Union

import structlog

from ..models import Action, Operation, ResourceRecord


logger = structlog.get_logger()


class Provisioner(Protocol):
    """
    Performs one side-effecting operation against managed infrastructure.

    Returns the resulting record for create and update, or None to store
    the desired record unchanged. The return value of a delete is ignored.
    Any exception marks the operation as failed.
    """

    def __call__(self, operation: Operation) -> Optional[ResourceRecord]:
        ...


class NullProvisioner:
    """Applies nothing; records desired state as-is."""

    def __call__(self, operation: Operation) -> Optional[ResourceRecord]:
        logger.info("Recording operation", action=operation.action.value, resource=operation.resource_id)
        if operation.action == Action.DELETE:
            return None
        return operation.record


class RecordingProvisioner:
    """
    Collects every operation it receives.

    Optionally fails on one call (1-based) to simulate a provider error.
    """

    def __init__(
        self,
        fail_on: Optional[int] = None,
        error: Optional[Exception] = None,
        computed: Optional[Callable[[Operation], dict]] = None,
    ):
        self.fail_on = fail_on
        self.error = error or RuntimeError("provisioner failure")
        self.computed = computed
        self.operations: List[Operation] = []
        self._lock = threading.Lock()

    def __call__(self, operation: Operation) -> Optional[ResourceRecord]:
        with self._lock:
            self.operations.append(operation)
            call = len(self.operations)

        if self.fail_on is not None and call == self.fail_on:
            raise self.error

        if operation.action == Action.DELETE:
            return None

        if self.computed is None:
            return operation.record

        attributes = {**operation.record.attributes, **self.computed(operation)}
        return operation.record.model_copy(update={"attributes": attributes})

    @property
    def actions(self) -> List[str]:
        return [str(op) for op in self.operations]


def load_provisioner(reference: str) -> Provisioner:
    """
    Load a provisioner by import path.

    Args:
        reference: "package.module:attribute". A class is instantiated with no
              arguments; any other callable is used as is.

    Returns:
        Provisioner callable

    Raises:
        ValueError: If the reference is malformed or does not name a callable
    """
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Provisioner must be given as 'module:attribute', got {reference!r}")

    module = importlib.import_module(module_name)
    target: Union[type, Callable, None] = getattr(module, attribute, None)

    if target is None:
        raise ValueError(f"{module_name} has no attribute {attribute}")
    if inspect.isclass(target):
        target = target()
    if not callable(target):
        raise ValueError(f"{reference} is not callable")

    return target
