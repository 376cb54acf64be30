# src/chat_bridge/relay_main.py
"""Entry point for a relay installation's delivery endpoint."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from chat_bridge.api import deliver_router, health_router
from chat_bridge.api.errors import install_exception_handlers
from chat_bridge.core.settings import settings
from chat_bridge.services.hub_client import HubClient
from chat_bridge.services.relay import Destination, RelayAgent

# Configure logger for this module
logger = logging.getLogger(__name__)


def create_relay_app(
    agent: RelayAgent | None = None,
    destination: Destination | None = None,
) -> FastAPI:
    """Build the relay application around an agent.

    Args:
        agent: Pre-built relay agent; created from settings when omitted
        destination: Local sink used when the agent is created here

    Returns:
        FastAPI application exposing ``/deliver`` and ``/healthz``
    """
    relay_app = FastAPI(
        title="Chat Bridge Relay",
        description="Delivery endpoint for one chat bridge installation",
        version=settings.app_version,
    )
    install_exception_handlers(relay_app)
    relay_app.include_router(deliver_router)
    relay_app.include_router(health_router)
    relay_app.state.relay_agent = agent or RelayAgent(HubClient(), destination)

    @relay_app.on_event("shutdown")
    async def on_shutdown() -> None:
        relay_agent: RelayAgent | None = getattr(relay_app.state, "relay_agent", None)
        if relay_agent:
            await relay_agent.hub.close()

    return relay_app


app = create_relay_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chat_bridge.relay_main:app", host="0.0.0.0", port=8001, reload=settings.debug)
