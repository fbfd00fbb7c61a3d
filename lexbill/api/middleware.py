"""Request tracing middleware and structured exception handlers.

Each request runs under a request id (taken from X-Request-ID when the
caller sends one) bound into the structlog context, and is counted in
Prometheus by its route template so /cases/7 and /cases/8 share a series.
Exception handlers turn BillingError subclasses into ErrorResponse JSON
carrying the ``retryable`` flag. Stack traces never reach the client.
"""

import time
import uuid

import structlog
from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from lexbill.core.exceptions import (
    BillingError,
    ConflictError,
    EmailNotConfiguredError,
    InvalidRetryTargetError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
)

_UNHANDLED = {
    "error": "internal_server_error",
    "message": "An unexpected error occurred.",
    "details": {},
    "retryable": False,
}


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Bind a request id into the log context and record request metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, method=request.method, path=request.url.path
        )

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_failed")
            response = JSONResponse(
                status_code=500, content={**_UNHANDLED, "request_id": request_id}
            )
        elapsed = time.perf_counter() - started

        endpoint = _route_template(request)
        REQUEST_COUNT.labels(request.method, endpoint, response.status_code).inc()
        REQUEST_LATENCY.labels(request.method, endpoint).observe(elapsed)

        response.headers["X-Request-ID"] = request_id
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "request_completed",
            endpoint=endpoint,
            status_code=response.status_code,
            duration_seconds=round(elapsed, 4),
        )
        return response


# ---------------------------------------------------------------------------
# Exception → JSON response handlers
# ---------------------------------------------------------------------------


def _request_id() -> str | None:
    """Pull the current request ID from structlog context, if bound."""
    ctx: dict[str, str] = structlog.contextvars.get_contextvars()
    return ctx.get("request_id")


def _error_response(status_code: int, error: str, exc: BillingError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": exc.message,
            "details": jsonable_encoder(exc.details),
            "retryable": exc.retryable,
            "request_id": _request_id(),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach structured error handlers to the app."""

    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(400, "validation_error", exc)

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(404, "not_found", exc)

    @app.exception_handler(ConflictError)
    async def _conflict(request: Request, exc: ConflictError) -> JSONResponse:
        return _error_response(409, "conflict", exc)

    @app.exception_handler(InvalidRetryTargetError)
    async def _invalid_retry(request: Request, exc: InvalidRetryTargetError) -> JSONResponse:
        return _error_response(409, "invalid_retry_target", exc)

    @app.exception_handler(EmailNotConfiguredError)
    async def _email_not_configured(
        request: Request, exc: EmailNotConfiguredError
    ) -> JSONResponse:
        return _error_response(409, "email_not_configured", exc)

    @app.exception_handler(StorageUnavailableError)
    async def _storage(request: Request, exc: StorageUnavailableError) -> JSONResponse:
        logger.error("storage_unavailable", message=exc.message, details=exc.details)
        return _error_response(503, "storage_unavailable", exc)

    @app.exception_handler(BillingError)
    async def _billing(request: Request, exc: BillingError) -> JSONResponse:
        logger.error(
            "billing_error",
            error_type=type(exc).__name__,
            message=exc.message,
            details=exc.details,
        )
        return _error_response(500, type(exc).__name__, exc)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", error_type=type(exc).__name__)
        return JSONResponse(status_code=500, content={**_UNHANDLED, "request_id": _request_id()})
