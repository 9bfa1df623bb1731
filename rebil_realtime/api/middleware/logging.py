"""Request/response logging middleware with trace IDs."""

from __future__ import annotations

import time
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ...config.logging import get_logger
from ...utils.tracing import clear_trace_id, generate_trace_id, set_trace_id

logger = get_logger(__name__)

TRACE_ID_HEADER = "X-Trace-ID"

# Polled by orchestrators; logged at debug level only
QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each REST call and echoes its trace ID in the response headers.

    A trace ID sent by the caller in `X-Trace-ID` is reused so that calls
    from other REBIL services can be followed across logs.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        trace_id = request.headers.get(TRACE_ID_HEADER) or generate_trace_id()
        set_trace_id(trace_id)
        path = request.url.path
        log = logger.debug if path in QUIET_PATHS else logger.info

        started = time.perf_counter()
        log("http_request_received", method=request.method, path=path, trace_id=trace_id)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "http_request_error",
                method=request.method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                trace_id=trace_id,
                exc_info=True,
            )
            raise
        finally:
            clear_trace_id()

        response.headers[TRACE_ID_HEADER] = trace_id
        log(
            "http_request_completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            trace_id=trace_id,
        )
        return response
