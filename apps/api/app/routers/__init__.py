"""API routers."""

from app.routers.convos import router as convos_router
from app.routers.websocket import router as websocket_router

__all__ = [
    "convos_router",
    "websocket_router",
]
