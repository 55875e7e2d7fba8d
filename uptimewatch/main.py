"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import init_db, close_db
from .routers import monitors_router, status_router
from .services import Services, bootstrap_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting UptimeWatch")

    await init_db()
    logger.info("Database initialized")

    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        app.state.services = await bootstrap_services(settings)
    services: Services = app.state.services

    if app.state.start_scheduler:
        services.scheduler.start()

    yield

    if owns_services:
        await services.shutdown()
        app.state.services = None
    await close_db()
    logger.info("Shutdown complete")


def create_app(services: Optional[Services] = None, start_scheduler: bool = True) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="UptimeWatch",
        description="Website uptime, certificate and domain expiry monitoring",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.start_scheduler = start_scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(monitors_router)
    app.include_router(status_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app
