"""API routes for state documents and locks."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
import structlog

from ..models import DesiredGraph, StateDocument, StateVersion, normalize_path
from .schemas import (
    ForceUnlockResponse,
    LockInfo,
    LockRequest,
    PlanResponse,
    ReleaseRequest,
    RenewRequest,
    WriteResponse,
)
from .services import Services, get_services


logger = structlog.get_logger()
router = APIRouter()


@router.get("/states/{state_path:path}", response_model=StateDocument)
def read_state(
    state_path: str,
    version: Optional[int] = Query(None, ge=1, description="Read a retained historical version"),
    services: Services = Depends(get_services),
):
    """Read the current (or a historical) state document."""
    if version is not None:
        return services.store.read_version(state_path, version)
    return services.store.read(state_path)


@router.put("/states/{state_path:path}", response_model=WriteResponse)
def write_state(
    state_path: str,
    document: StateDocument,
    expected_version: int = Query(..., ge=0),
    fencing_token: Optional[int] = Query(None),
    holder: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """
    Write a state document.

    The write succeeds only if the stored version equals expected_version.
    When holder and fencing_token are both given, the lock must still be
    live for that holder.
    """
    if holder is not None and fencing_token is not None:
        services.locks.validate(state_path, holder, fencing_token)

    version = services.store.write(state_path, document, expected_version, fencing_token)

    logger.info(
        "State pushed",
        path=state_path,
        version=version,
        holder=holder,
        fencing_token=fencing_token,
    )
    return WriteResponse(path=normalize_path(state_path), version=version)


@router.get("/versions/{state_path:path}", response_model=List[StateVersion])
def list_versions(state_path: str, services: Services = Depends(get_services)):
    """List retained versions, oldest first."""
    return services.store.list_versions(state_path)


@router.get("/locks/{state_path:path}", response_model=LockInfo)
def get_lock(state_path: str, services: Services = Depends(get_services)):
    """Get the live lock on a path."""
    entry = services.locks.get(state_path)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"{state_path} is not locked")
    return LockInfo.from_entry(entry)


@router.post("/locks/{state_path:path}", response_model=LockInfo)
def acquire_lock(
    state_path: str,
    request: LockRequest,
    services: Services = Depends(get_services),
):
    """Acquire (or re-enter) the lock on a path."""
    entry = services.locks.acquire_entry(state_path, request.holder, request.ttl_seconds)
    return LockInfo.from_entry(entry)


@router.put("/locks/{state_path:path}", response_model=LockInfo)
def renew_lock(
    state_path: str,
    request: RenewRequest,
    services: Services = Depends(get_services),
):
    """Renew a live lock, issuing a new fencing token."""
    entry = services.locks.renew_entry(
        state_path, request.holder, request.fencing_token, request.ttl_seconds
    )
    return LockInfo.from_entry(entry)


@router.delete("/locks/{state_path:path}")
def release_lock(
    state_path: str,
    request: ReleaseRequest,
    services: Services = Depends(get_services),
):
    """Release a lock held with the given token."""
    services.locks.release(state_path, request.holder, request.fencing_token)
    return {"path": normalize_path(state_path), "released": True}


@router.post("/force-unlock/{state_path:path}", response_model=ForceUnlockResponse)
def force_unlock(state_path: str, services: Services = Depends(get_services)):
    """
    Remove a lock regardless of holder.

    This can cause a lost update if the previous holder is still writing.
    """
    entry = services.locks.force_unlock(state_path)
    removed = LockInfo.from_entry(entry) if entry else None
    return ForceUnlockResponse(path=normalize_path(state_path), removed=removed)


@router.post("/plan/{state_path:path}", response_model=PlanResponse)
def plan(
    state_path: str,
    desired: DesiredGraph,
    services: Services = Depends(get_services),
):
    """Compute the diff an apply would run, without locking."""
    result = services.coordinator.plan(state_path, desired)
    return PlanResponse.from_operations(
        result.path, result.version, result.summary(), result.operations
    )
