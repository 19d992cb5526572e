"""API v1 module."""

from nodekeeper.api.v1.backups import router as backups_router
from nodekeeper.api.v1.health import router as health_router

__all__ = [
    "backups_router",
    "health_router",
]
