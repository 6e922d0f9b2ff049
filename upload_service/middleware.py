"""
Request correlation and recovery middleware.

Every request gets a fresh UUID4 correlation ID and a logger bound to it
(plus method, path and client address). Both are available to handlers as
``request.state.correlation`` and to deeper layers through a context
variable. After the handler finishes, one summary line is logged at info
for status < 400 and at error otherwise.
"""
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from upload_service import logger as log
from upload_service.metrics import REQUEST_LATENCY

CORRELATION_HEADER = "X-Correlation-ID"
UNKNOWN_CORRELATION_ID = "unknown"


@dataclass(frozen=True)
class CorrelationContext:
    correlation_id: str
    logger: log.FieldLogger
    start_time: float


_current: ContextVar[Optional[CorrelationContext]] = ContextVar("correlation_context", default=None)


def current_context() -> Optional[CorrelationContext]:
    """Correlation context of the request running in this task, if any"""
    return _current.get()


def _context(request: Request) -> Optional[CorrelationContext]:
    ctx = getattr(request.state, "correlation", None)
    return ctx if isinstance(ctx, CorrelationContext) else None


def get_logger(request: Request) -> log.FieldLogger:
    """Request-scoped logger, or the global one when none is bound"""
    ctx = _context(request)
    if ctx is None:
        return log.get_logger()
    return ctx.logger


def get_correlation_id(request: Request) -> str:
    ctx = _context(request)
    if ctx is None:
        return UNKNOWN_CORRELATION_ID
    return ctx.correlation_id


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = str(uuid.uuid4())
        client_ip = request.client.host if request.client else ""
        request_logger = log.get_logger().bind(
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
            client_ip=client_ip,
        )
        ctx = CorrelationContext(
            correlation_id=correlation_id,
            logger=request_logger,
            start_time=time.perf_counter(),
        )
        request.state.correlation = ctx
        token = _current.set(ctx)
        try:
            response = await call_next(request)
        finally:
            _current.reset(token)

        response.headers[CORRELATION_HEADER] = correlation_id

        duration = time.perf_counter() - ctx.start_time
        status_code = response.status_code
        REQUEST_LATENCY.labels(method=request.method, status_code=status_code).observe(duration)

        fields = {
            "status_code": status_code,
            "duration_ms": round(duration * 1000, 3),
            "size": int(response.headers.get("content-length", 0) or 0),
        }
        message = f"{request.method} {request.url.path} - {status_code} ({duration * 1000:.3f}ms)"
        if status_code >= 400:
            request_logger.error(message, fields=fields)
        else:
            request_logger.info(message, fields=fields)
        return response


class RecoveryMiddleware(BaseHTTPMiddleware):
    """Last-resort safety net turning unexpected exceptions into a 500"""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            get_logger(request).error(
                "Unhandled exception while serving request",
                exc_info=True,
                fields={"error": e},
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal Server Error"},
            )
