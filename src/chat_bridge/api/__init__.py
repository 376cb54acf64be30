# src/chat_bridge/api/__init__.py
"""HTTP API for the hub and relay applications."""

from .endpoints import (
    deliver_router,
    health_router,
    publish_router,
    registry_router,
    system_router,
)

__all__ = [
    "deliver_router",
    "health_router",
    "publish_router",
    "registry_router",
    "system_router",
]
