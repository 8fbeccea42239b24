"""Builders and fakes shared by the test suite."""

import threading
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from remotestate.models import DesiredGraph, Operation, ResourceRecord


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += timedelta(seconds=seconds)


class FakeMonotonic:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 100.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FailOnSecondProvisioner:
    """Importable provisioner that fails its second operation."""

    def __init__(self):
        self.calls: List[str] = []

    def __call__(self, operation: Operation) -> Optional[ResourceRecord]:
        self.calls.append(str(operation))
        if len(self.calls) == 2:
            raise RuntimeError("quota exceeded")
        return None


def make_record(resource_id: str, depends_on=(), **attributes) -> ResourceRecord:
    return ResourceRecord(id=resource_id, attributes=attributes, depends_on=list(depends_on))


def make_graph(*records: ResourceRecord, outputs=None) -> DesiredGraph:
    return DesiredGraph(resources=list(records), outputs=outputs or {})
