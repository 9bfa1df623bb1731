"""API key authentication middleware.

REST endpoints under `/api/` require the configured key in the `X-API-Key`
header or the `api_key` query parameter. When no key is configured the
check is skipped.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ...config.logging import get_logger
from ...config.settings import settings
from ...exceptions import AuthenticationError

logger = get_logger(__name__)


class APIKeyAuthMiddleware(BaseHTTPMiddleware):
    """Middleware enforcing simple API key authentication for REST endpoints."""

    def __init__(self, app, api_prefix: str = "/api"):
        super().__init__(app)
        self.api_prefix = api_prefix

    async def dispatch(self, request: Request, call_next: Callable):
        path = request.url.path
        if not settings.notifier_api_key or not path.startswith(self.api_prefix):
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")

        try:
            if not api_key:
                raise AuthenticationError("Missing API key")
            if api_key != settings.notifier_api_key:
                raise AuthenticationError("Invalid API key")
        except AuthenticationError as exc:
            logger.warning(
                "api_authentication_failed",
                path=path,
                method=request.method,
                error=str(exc),
            )
            return JSONResponse(
                status_code=401,
                content={
                    "error": exc.message,
                    "code": "AUTHENTICATION_FAILED",
                    "details": {"reason": "invalid_or_missing_api_key"},
                },
            )

        return await call_next(request)
