# src/chat_bridge/main.py
"""Main entry point for the hub application."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from chat_bridge.api import health_router, publish_router, registry_router, system_router
from chat_bridge.api.errors import install_exception_handlers
from chat_bridge.core.settings import settings
from chat_bridge.services.hub import HubService, build_hub_service

# Configure logger for this module
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Chat Bridge Hub",
    description="Endpoint registry and fan-out broadcaster for the chat bridge",
    version=settings.app_version,
)

install_exception_handlers(app)

# Include API routers
app.include_router(registry_router)
app.include_router(publish_router)
app.include_router(system_router)
app.include_router(health_router)


@app.on_event("startup")
async def on_startup() -> None:
    hub = build_hub_service()
    # An unreachable store at startup is fatal: StoreUnavailable aborts the boot.
    await hub.registry.ping()
    app.state.hub = hub
    logger.info(
        "Hub ready with %s registry (%d endpoint(s))",
        hub.registry.backend_name,
        await hub.registry_size(),
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    hub: HubService | None = getattr(app.state, "hub", None)
    if hub:
        await hub.shutdown()
    app.state.hub = None


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the hub."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "role": "hub",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chat_bridge.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
