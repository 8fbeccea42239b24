"""Dependency ordering and diff computation."""

import heapq
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..exceptions import CycleDetectedError, DuplicateResourceError, UnknownDependencyError
from ..models import Action, DesiredGraph, Operation, ResourceRecord, StateDocument


def validate_graph(resources: Sequence[ResourceRecord]) -> List[ResourceRecord]:
    """
    Validate a desired resource graph.

    Args:
        resources: Desired resource records

    Returns:
        The records in dependency order

    Raises:
        DuplicateResourceError: If an id is declared twice
        UnknownDependencyError: If a dependency names an undeclared id
        CycleDetectedError: If the dependency relation has a cycle
    """
    seen = set()
    for record in resources:
        if record.id in seen:
            raise DuplicateResourceError(record.id)
        seen.add(record.id)

    return topological_order(resources, strict=True)


def topological_order(
    resources: Sequence[ResourceRecord], strict: bool = True
) -> List[ResourceRecord]:
    """
    Order records so every record follows its dependencies.

    Ties are broken by input position, so the result is deterministic.

    Args:
        resources: Records to order
        strict: Raise on dependencies outside the set instead of ignoring them

    Returns:
        Records in topological order
    """
    index = {record.id: i for i, record in enumerate(resources)}
    pending = [0] * len(resources)
    dependents: Dict[int, List[int]] = {i: [] for i in range(len(resources))}

    for i, record in enumerate(resources):
        for dependency in record.depends_on:
            if dependency not in index:
                if strict:
                    raise UnknownDependencyError(record.id, dependency)
                continue
            pending[i] += 1
            dependents[index[dependency]].append(i)

    ready = [i for i, count in enumerate(pending) if count == 0]
    heapq.heapify(ready)
    ordered: List[ResourceRecord] = []

    while ready:
        i = heapq.heappop(ready)
        ordered.append(resources[i])
        for dependent in dependents[i]:
            pending[dependent] -= 1
            if pending[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(ordered) < len(resources):
        raise CycleDetectedError(_find_cycle(resources, index, pending))

    return ordered


def _find_cycle(
    resources: Sequence[ResourceRecord], index: Dict[str, int], pending: List[int]
) -> List[str]:
    # Every unresolved record still waits on another unresolved record, so
    # following dependencies from any of them must revisit a node.
    start = next(i for i, count in enumerate(pending) if count > 0)
    path: List[int] = []
    position: Dict[int, int] = {}
    current = start

    while current not in position:
        position[current] = len(path)
        path.append(current)
        current = next(
            index[dep]
            for dep in resources[current].depends_on
            if dep in index and pending[index[dep]] > 0
        )

    cycle = [resources[i].id for i in path[position[current]:]]
    cycle.append(resources[current].id)
    return cycle


def compute_diff(current: StateDocument, desired: DesiredGraph) -> List[Operation]:
    """
    Compute the ordered operations turning current state into desired state.

    Creates and updates come first in dependency order, then deletes in
    reverse dependency order of the current document.

    Args:
        current: Stored state document (empty for a new path)
        desired: Desired graph

    Returns:
        Ordered list of operations
    """
    ordered = validate_graph(desired.resources)
    stored = current.resource_map()
    operations: List[Operation] = []

    for record in ordered:
        existing = stored.get(record.id)
        if existing is None:
            operations.append(Operation(Action.CREATE, record))
        elif not existing.attributes_match(record):
            operations.append(Operation(Action.UPDATE, record, previous=existing))

    desired_ids = {record.id for record in desired.resources}
    for record in reversed(topological_order(current.resources, strict=False)):
        if record.id not in desired_ids:
            operations.append(Operation(Action.DELETE, record, previous=record))

    return operations


def resolve_outputs(
    outputs: Dict[str, str], resources: Iterable[ResourceRecord]
) -> Dict[str, Any]:
    """
    Resolve output references against resource attributes.

    A reference is "<resource id>.<attribute>[.<key>...]". Resource ids may
    contain dots themselves, so the longest matching id prefix wins. Integer
    segments index into lists. Unresolvable references yield None.
    """
    by_id = {record.id: record for record in resources}
    return {name: _resolve(reference, by_id) for name, reference in outputs.items()}


def _resolve(reference: str, by_id: Dict[str, ResourceRecord]) -> Optional[Any]:
    parts = reference.split(".")

    for split in range(len(parts) - 1, 0, -1):
        resource_id = ".".join(parts[:split])
        if resource_id in by_id:
            value: Any = by_id[resource_id].attributes
            for key in parts[split:]:
                if isinstance(value, dict) and key in value:
                    value = value[key]
                elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
                    value = value[int(key)]
                else:
                    return None
            return value

    return None
