"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Own the process-wide VoiceSurface (created on startup, torn down on
  shutdown, which forces end_conversation)
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import AppConfig
from observability import logger
from session.surface import VoiceSurface, build_voice_surface

from server.routes import register_routes


SurfaceFactory = Callable[[AppConfig], VoiceSurface]


def create_app(
    config: AppConfig | None = None,
    *,
    surface_factory: SurfaceFactory = build_voice_surface,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    config and surface_factory are injectable so tests can run the app
    against in-memory collaborators.
    """
    config = config or AppConfig.load_from_env()
    logger.configure(enabled=config.enable_json_logs, level=config.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        surface = surface_factory(config)
        app.state.surface = surface
        surface.start()
        try:
            yield
        finally:
            await surface.shutdown()

    app = FastAPI(title="Household Voice Surface", lifespan=lifespan)
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)

    return app
