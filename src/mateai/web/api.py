"""FastAPI application factory.

Main entry point for the Mate AI Web API.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mateai import __version__
from mateai.config import load_app_config
from mateai.web.routes import ai_router, health_router, practice_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    config = load_app_config()
    logger.info(
        "api_startup",
        backend_url=config.backend.base_url,
        default_provider=config.default_provider,
    )
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="Mate AI API",
        description="AI exercise generation, validation and practice sessions",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(ai_router)
    app.include_router(practice_router)

    return app


# Default app instance for uvicorn
app = create_app()
