"""FastAPI application and routes."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import ConfigManager
from .dependencies import Services, build_services

logger = logging.getLogger(__name__)


def create_app(
    config_manager: Optional[ConfigManager] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """Build the API application.

    Args:
        config_manager: Where configuration is read from (default: ConfigManager())
        services: Ready-made services; when given, configuration is not loaded
            and the caller owns their shutdown

    Raises:
        ConfigError: If configuration is missing or invalid
    """
    if services is None:
        config_manager = config_manager or ConfigManager()
        app_config = config_manager.load_app_config()
        env_settings = config_manager.load_env_settings()
    else:
        app_config = services.config
        env_settings = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("Starting Marksync API...")

        owns_services = app.state.services is None
        if owns_services:
            app.state.services = await build_services(app_config, env_settings)

        sync_task = None
        coordinator = app.state.services.coordinator
        if app_config.sync_interval_seconds > 0 and coordinator.remote is not None:
            sync_task = asyncio.create_task(
                coordinator.run_periodic(app_config.sync_interval_seconds)
            )

        yield

        logger.info("Shutting down Marksync API...")
        if sync_task is not None:
            sync_task.cancel()
            with suppress(asyncio.CancelledError):
                await sync_task
        if owns_services:
            await app.state.services.close()
            app.state.services = None

    app = FastAPI(
        title="Marksync API",
        description="Bookmark manager with folders, tags, locked folders and remote sync",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config.allowed_origins,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Marksync-Session"],
    )

    from .bookmarks import router as bookmarks_router
    from .folders import router as folders_router
    from .health import router as health_router
    from .sync import router as sync_router
    from .tags import router as tags_router

    app.include_router(bookmarks_router, prefix="/api/v1", tags=["bookmarks"])
    app.include_router(folders_router, prefix="/api/v1", tags=["folders"])
    app.include_router(tags_router, prefix="/api/v1", tags=["tags"])
    app.include_router(sync_router, prefix="/api/v1", tags=["sync"])
    app.include_router(health_router, prefix="/api/v1", tags=["health"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Marksync API",
            "version": "0.1.0",
            "docs": "/docs",
            "health": "/api/v1/health",
        }

    return app
