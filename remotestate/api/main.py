"""FastAPI application serving remote state and locks."""

import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
import structlog

from .. import __version__
from ..config import settings
from ..exceptions import (
    GraphError,
    InvalidPathError,
    LockedError,
    LockExpiredError,
    NotHolderError,
    RemoteStateError,
    StateConflictError,
    StateNotFoundError,
    StorageUnavailableError,
)
from ..logging import setup_logging
from ..worker import LockSweeper
from .middleware import logging_middleware, metrics_middleware
from .routes import router
from .services import get_services, init_services, is_initialized


# Configure structured logging
setup_logging(settings.log_level)
logger = structlog.get_logger()

ERROR_STATUS = {
    InvalidPathError: 400,
    StateNotFoundError: 404,
    StateConflictError: 409,
    NotHolderError: 409,
    LockExpiredError: 410,
    GraphError: 422,
    LockedError: 423,
    StorageUnavailableError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown tasks.
    """
    logger.info("Starting remotestate API", version=__version__)

    if not is_initialized():
        try:
            init_services(settings=settings)
            logger.info(
                "Backends initialized",
                state_backend=settings.state_backend,
                lock_backend=settings.lock_backend,
            )
        except Exception as e:
            logger.error("Failed to initialize backends", error=str(e))
            raise

    sweeper = LockSweeper(get_services().locks, settings.sweep_interval_seconds)
    thread = threading.Thread(
        target=sweeper.start, kwargs={"install_signal_handlers": False}, daemon=True
    )
    thread.start()

    yield

    logger.info("Shutting down remotestate API")
    sweeper.stop()


app = FastAPI(
    title="remotestate",
    description="Versioned remote state storage with fenced distributed locks",
    version=__version__,
    lifespan=lifespan,
)

app.middleware("http")(logging_middleware)
app.middleware("http")(metrics_middleware)

app.include_router(router, prefix="/api/v1")
app.mount("/metrics", make_asgi_app())


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "remotestate"}


def status_for(exc: RemoteStateError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(RemoteStateError)
async def remote_state_exception_handler(request: Request, exc: RemoteStateError):
    """Map domain errors to HTTP responses."""
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request rejected",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=exc.message,
        status_code=status_code,
    )

    content = {"error": type(exc).__name__, "message": exc.message}
    if isinstance(exc, LockedError) and exc.holder:
        content["holder"] = exc.holder

    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "InternalServerError", "message": "An unexpected error occurred"},
    )

