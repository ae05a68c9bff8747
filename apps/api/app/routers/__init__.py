"""API routers."""

from app.routers.webhooks import router as webhooks_router
from app.routers.internal import router as internal_router

__all__ = [
    "webhooks_router",
    "internal_router",
]
