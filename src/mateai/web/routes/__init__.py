"""Route handlers for the Web API."""

from mateai.web.routes.health import router as health_router
from mateai.web.routes.ai import router as ai_router
from mateai.web.routes.practice import router as practice_router

__all__ = [
    "health_router",
    "ai_router",
    "practice_router",
]
