"""Request logging and Prometheus metrics for the API."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from prometheus_client import Counter, Histogram
import structlog


REQUEST_COUNT = Counter(
    "remotestate_api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

REQUEST_DURATION = Histogram(
    "remotestate_api_request_duration_seconds",
    "API request duration",
    ["method", "endpoint"],
)

LOCK_CONTENTION = Counter(
    "remotestate_lock_contention_total",
    "Lock requests refused because another holder has the lock",
    ["method"],
)


def _endpoint(request: Request) -> str:
    # Route template, so state paths don't become label values
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


async def logging_middleware(request: Request, call_next: Callable) -> Response:
    """
    Logs every request with a correlation ID.

    The ID is taken from X-Correlation-ID when the client sends one and is
    echoed back on the response.
    """
    correlation_id = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex
    logger = structlog.get_logger().bind(
        correlation_id=correlation_id,
        method=request.method,
        path=request.url.path,
    )

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            "Request failed",
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            error=str(e),
            exc_info=True,
        )
        raise

    logger.info(
        "Request completed",
        endpoint=_endpoint(request),
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    response.headers["X-Correlation-ID"] = correlation_id
    return response


async def metrics_middleware(request: Request, call_next: Callable) -> Response:
    """Records request counts, latency and lock contention."""
    started = time.perf_counter()

    try:
        response = await call_next(request)
        status = response.status_code
    except Exception:
        status = 500
        raise
    finally:
        endpoint = _endpoint(request)
        REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=status).inc()
        REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(
            time.perf_counter() - started
        )

    if status == 423:
        LOCK_CONTENTION.labels(method=request.method).inc()

    return response
