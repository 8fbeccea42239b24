"""Build stores and lock managers from settings."""

from ..config import Settings
from .lock import LockBackend, LockManager, MemoryLockBackend
from .store import MemoryStateStore, StateStore


def build_state_store(settings: Settings) -> StateStore:
    """
    Create the configured state store.

    Args:
        settings: Application settings

    Returns:
        StateStore instance
    """
    if settings.state_backend == "memory":
        return MemoryStateStore(retain_versions=settings.retain_versions)

    if settings.state_backend == "sql":
        from .sql import SQLStateStore

        return SQLStateStore(settings.database_url, retain_versions=settings.retain_versions)

    if settings.state_backend == "s3":
        from .s3 import S3StateStore

        return S3StateStore(
            bucket=settings.s3_bucket,
            prefix=settings.s3_prefix,
            region=settings.aws_region,
            retain_versions=settings.retain_versions,
        )

    raise ValueError(f"Unsupported state backend: {settings.state_backend}")


def build_lock_backend(settings: Settings) -> LockBackend:
    """Create the configured lock backend."""
    if settings.lock_backend == "memory":
        return MemoryLockBackend()

    if settings.lock_backend == "sql":
        from .sql import SQLLockBackend

        return SQLLockBackend(settings.database_url)

    if settings.lock_backend == "dynamodb":
        from .dynamodb import DynamoDBLockBackend

        return DynamoDBLockBackend(settings.dynamodb_table, region=settings.aws_region)

    if settings.lock_backend == "redis":
        from .redis_lock import RedisLockBackend

        return RedisLockBackend(settings.redis_url, prefix=settings.redis_prefix)

    raise ValueError(f"Unsupported lock backend: {settings.lock_backend}")


def build_lock_manager(settings: Settings) -> LockManager:
    return LockManager(build_lock_backend(settings), default_ttl=settings.lock_ttl_seconds)


def ensure_backends(settings: Settings) -> None:
    """
    Ensure remote backend resources exist.

    For S3 state, creates the versioned, encrypted bucket. For DynamoDB
    locks, creates the lock table. Other backends need no setup.
    """
    store = build_state_store(settings)
    if hasattr(store, "ensure_bucket"):
        store.ensure_bucket()

    backend = build_lock_backend(settings)
    if hasattr(backend, "ensure_table"):
        backend.ensure_table()
