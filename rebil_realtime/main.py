"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .api.health import router as health_router
from .api.middleware import APIKeyAuthMiddleware, RequestLoggingMiddleware
from .api.v1 import notifications_router, stream_router
from .config.logging import get_logger, setup_logging
from .config.settings import settings
from .services.realtime.notification_service import (
    NotificationService,
    NotificationServiceConfig,
)
from .services.realtime.supabase_transport import SupabaseRealtimeTransport
from .services.realtime.transport import RealtimeTransport

# Setup logging first
setup_logging()
logger = get_logger(__name__)


def create_app(transport: Optional[RealtimeTransport] = None) -> FastAPI:
    """
    Build the application.

    Args:
        transport: Realtime transport to use. Defaults to a SupabaseRealtimeTransport
            configured from settings.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Composition root: build the realtime layer on startup, release it on shutdown."""
        logger.info("application_starting", service=settings.notifier_service_name)

        service = NotificationService(
            transport or SupabaseRealtimeTransport.from_settings(settings),
            NotificationServiceConfig.from_settings(settings),
        )
        app.state.notification_service = service

        # Not being ready is survivable: /health reports it and subscribers degrade
        if not await service.init():
            logger.warning("application_started_without_realtime", error=service.init_error)

        logger.info("application_started", port=settings.notifier_port)
        yield

        logger.info("application_shutting_down")
        try:
            await service.shutdown()
            logger.info("application_shutdown_complete")
        except Exception as e:
            logger.error(
                "application_shutdown_error",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    app = FastAPI(
        title="REBIL Realtime Notification Service",
        description="Realtime car status and admin notification feeds over Supabase Realtime",
        version="1.0.0",
        lifespan=lifespan,
    )

    #
    # Middleware (logging, then auth)
    #
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(APIKeyAuthMiddleware)

    #
    # Routers
    #
    app.include_router(health_router)
    app.include_router(notifications_router)
    app.include_router(stream_router)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
            error_type=type(exc).__name__,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rebil_realtime.main:app",
        host="0.0.0.0",
        port=settings.notifier_port,
        log_level=settings.notifier_log_level.lower(),
        reload=False,
    )
