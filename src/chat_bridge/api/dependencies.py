"""Shared API dependencies resolving the services stored on the application."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from chat_bridge.services.hub import HubService
from chat_bridge.services.relay import RelayAgent


def get_hub_service(request: Request) -> HubService:
    """Return the hub service created at startup.

    Raises:
        HTTPException: If the application has not finished starting
    """
    hub: HubService | None = getattr(request.app.state, "hub", None)
    if hub is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Hub is not ready",
        )
    return hub


def get_relay_agent(request: Request) -> RelayAgent:
    """Return the relay agent attached to the relay application."""
    agent: RelayAgent | None = getattr(request.app.state, "relay_agent", None)
    if agent is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay agent is not ready",
        )
    return agent


HubServiceDep = Annotated[HubService, Depends(get_hub_service)]
RelayAgentDep = Annotated[RelayAgent, Depends(get_relay_agent)]
