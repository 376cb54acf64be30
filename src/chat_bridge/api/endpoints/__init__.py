# src/chat_bridge/api/endpoints/__init__.py
"""API endpoint modules for the hub and relay applications."""

from .deliver import router as deliver_router
from .health import router as health_router
from .publish import router as publish_router
from .registry import router as registry_router
from .system import router as system_router

__all__ = [
    "deliver_router",
    "health_router",
    "publish_router",
    "registry_router",
    "system_router",
]
