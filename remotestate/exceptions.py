from typing import Any, List, Optional


class RemoteStateError(Exception):
    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(message)


class InvalidPathError(RemoteStateError, ValueError):
    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Invalid state path {path!r}: {reason}")


class StateNotFoundError(RemoteStateError):
    def __init__(self, path: str, version: Optional[int] = None):
        self.path = path
        self.version = version
        if version is None:
            super().__init__(f"No state stored at {path!r}")
        else:
            super().__init__(f"No state version {version} stored at {path!r}")


class StateConflictError(RemoteStateError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"State conflict at {path!r}: {reason}")


class StorageUnavailableError(RemoteStateError):
    def __init__(self, backend: str, message: str):
        self.backend = backend
        super().__init__(f"Storage backend {backend} unavailable: {message}")


class LockedError(RemoteStateError):
    def __init__(self, path: str, holder: Optional[str] = None):
        self.path = path
        self.holder = holder
        if holder:
            super().__init__(f"State {path!r} is locked by {holder}")
        else:
            super().__init__(f"State {path!r} is locked")


class NotHolderError(RemoteStateError):
    def __init__(self, path: str, holder: str):
        self.path = path
        self.holder = holder
        super().__init__(f"{holder} does not hold the lock on {path!r}")


class LockExpiredError(RemoteStateError):
    def __init__(self, path: str, holder: str, fencing_token: int):
        self.path = path
        self.holder = holder
        self.fencing_token = fencing_token
        super().__init__(
            f"Lock on {path!r} held by {holder} with token {fencing_token} has expired"
        )


class GraphError(RemoteStateError, ValueError):
    pass


class CycleDetectedError(GraphError):
    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class UnknownDependencyError(GraphError):
    def __init__(self, resource_id: str, dependency: str):
        self.resource_id = resource_id
        self.dependency = dependency
        super().__init__(f"Resource {resource_id} depends on unknown resource {dependency}")


class DuplicateResourceError(GraphError):
    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        super().__init__(f"Resource {resource_id} is declared more than once")


class PartialApplyError(RemoteStateError):
    def __init__(self, path: str, index: int, operation: Any, cause: BaseException, version: int):
        self.path = path
        self.index = index
        self.operation = operation
        self.cause = cause
        self.version = version
        super().__init__(
            f"Apply on {path!r} failed at operation {index} ({operation}): {cause}; "
            f"state saved at version {version}"
        )


class DeadlineExceededError(RemoteStateError):
    def __init__(self, path: str, index: int, version: int):
        self.path = path
        self.index = index
        self.version = version
        super().__init__(
            f"Deadline exceeded applying {path!r} before operation {index}; "
            f"state saved at version {version}"
        )
