"""FastAPI routers package."""

from .health import router as health_router
from .metrics import router as metrics_router
from .waitlist import router as waitlist_router

__all__ = [
    "health_router",
    "metrics_router",
    "waitlist_router",
]
