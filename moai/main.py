"""FastAPI application entry point."""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from moai.api.routes import router
from moai.api.websocket import handle_driver_location_socket, handle_notification_socket
from moai.config import Settings, get_settings
from moai.errors import DocumentValidationError
from moai.middleware.rate_limit import RateLimitExceeded, client_ip
from moai.services.container import ServiceContainer
from moai.utils.logging import RequestLogger, get_logger, setup_logging

logger = get_logger(__name__)
request_logger = RequestLogger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("application_starting")

    settings: Settings = app.state.settings
    app.state.services = await ServiceContainer.create(settings)
    await app.state.services.order_notifier.start()
    logger.info("services_initialized")

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await app.state.services.close()


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    decision = exc.decision
    return JSONResponse(
        {"error": decision.message, "retryAfter": decision.retry_after},
        status_code=429,
        headers=decision.headers,
    )


async def document_validation_handler(
    request: Request, exc: DocumentValidationError
) -> JSONResponse:
    request_logger.log_error(
        str(exc), request.url.path, collection=exc.collection, document_id=exc.document_id
    )
    return JSONResponse({"detail": "Stored document is invalid"}, status_code=500)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application."""
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="Moai Delivery API",
        description="Order lifecycle, routing, tracking and notifications for home-cooked food delivery",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        request_logger.log_request(
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - start) * 1000,
            client_ip=client_ip(request),
        )
        return response

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(DocumentValidationError, document_validation_handler)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Moai Delivery API",
            "docs": "/api/docs",
            "health": "/api/health",
        }

    app.include_router(router, prefix="/api", tags=["api"])

    @app.websocket("/ws/notifications/{user_id}")
    async def notifications_endpoint(websocket: WebSocket, user_id: str) -> None:
        """Notification push channel."""
        await handle_notification_socket(websocket, user_id, websocket.app.state.services)

    @app.websocket("/ws/drivers/{driver_id}/location")
    async def driver_location_endpoint(websocket: WebSocket, driver_id: str) -> None:
        """Driver position feed."""
        await handle_driver_location_socket(websocket, driver_id, websocket.app.state.services)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "moai.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
    )
