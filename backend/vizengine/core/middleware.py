"""
Request middleware: correlation ids and request timing.
"""
import time
import asyncio
import uuid
import logging
from contextvars import ContextVar

from fastapi import status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from vizengine.core.errors import ErrorCodes, get_error_response
from vizengine.core.performance import PerformanceMonitor

logger = logging.getLogger(__name__)

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="system")

_base_factory = logging.getLogRecordFactory()


def _record_factory(*args, **kwargs):
    record = _base_factory(*args, **kwargs)
    record.correlation_id = correlation_id_var.get()
    return record


def install_log_record_factory():
    """Tag every log record with the correlation id of the current request."""
    logging.setLogRecordFactory(_record_factory)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Add a correlation id to each request, its logs and its response headers."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)

        start_time = time.perf_counter()
        logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={"method": request.method, "path": request.url.path}
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.error(
                f"Request failed: {request.method} {request.url.path} - {e} ({duration:.3f}s)",
                extra={"method": request.method, "path": request.url.path, "duration": duration},
                exc_info=True
            )
            error_response = JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={**get_error_response(ErrorCodes.UNKNOWN_ERROR), "correlation_id": correlation_id}
            )
            error_response.headers["X-Correlation-ID"] = correlation_id
            return error_response
        finally:
            correlation_id_var.reset(token)

        duration = time.perf_counter() - start_time
        PerformanceMonitor.record_metric(
            "request_duration",
            duration,
            {
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code
            }
        )
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Response-Time"] = f"{duration:.3f}"
        logger.info(
            f"Request completed: {request.method} {request.url.path} - {response.status_code} ({duration:.3f}s)",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration": duration
            }
        )
        return response


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Answer 504 when a request runs past request_timeout_seconds."""

    def __init__(self, app, timeout_seconds: float):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next):
        correlation_id = getattr(request.state, 'correlation_id', 'unknown')
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Request timeout after {self.timeout_seconds} seconds: {request.url.path}")
            error_info = get_error_response(ErrorCodes.TIMEOUT)
            error_info['correlation_id'] = correlation_id
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content=error_info,
                headers={"X-Correlation-ID": correlation_id}
            )
