"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from task_bidder_service.config import get_settings
from task_bidder_service.core.exceptions import register_exception_handlers
from task_bidder_service.core.lifespan import lifespan
from task_bidder_service.core.middleware import RequestValidationMiddleware
from task_bidder_service.routers import bids, health, messages, payments, tasks, users, websocket


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(tasks.router, tags=["Tasks"])
    app.include_router(bids.router, tags=["Bids"])
    app.include_router(payments.router, tags=["Payments"])
    app.include_router(messages.router, tags=["Messages"])
    app.include_router(users.router, tags=["Users"])
    app.add_api_websocket_route(settings.websocket.path, websocket.realtime_endpoint)

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
