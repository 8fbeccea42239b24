"""Shared service handles for the API process."""

from dataclasses import dataclass
from typing import Optional

from ..config import Settings, settings as default_settings
from ..engine import (
    LockManager,
    StateCoordinator,
    StateStore,
    build_lock_manager,
    build_state_store,
)


@dataclass
class Services:
    """Store, lock manager and coordinator bound to one backing store."""

    store: StateStore
    locks: LockManager
    coordinator: StateCoordinator


# Global services instance (initialized in app startup)
_services: Optional[Services] = None


def init_services(
    store: Optional[StateStore] = None,
    locks: Optional[LockManager] = None,
    settings: Optional[Settings] = None,
) -> Services:
    """
    Initialize global services.

    Args:
        store: State store (built from settings if omitted)
        locks: Lock manager (built from settings if omitted)
        settings: Settings used for anything not passed explicitly

    Returns:
        Services instance
    """
    global _services
    settings = settings or default_settings
    store = store or build_state_store(settings)
    locks = locks or build_lock_manager(settings)
    _services = Services(store=store, locks=locks, coordinator=StateCoordinator(store, locks))
    return _services


def get_services() -> Services:
    """
    Get global services.

    Raises:
        RuntimeError: If services are not initialized
    """
    if _services is None:
        raise RuntimeError("Services not initialized. Call init_services() first.")
    return _services


def is_initialized() -> bool:
    return _services is not None


def reset_services() -> None:
    global _services
    _services = None
