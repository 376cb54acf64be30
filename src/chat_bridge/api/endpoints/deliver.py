"""Relay client endpoints: inbound deliveries from the hub."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, status

from chat_bridge.api.dependencies import RelayAgentDep
from chat_bridge.schemas.messages import DeliverRequest

router = APIRouter(tags=["relay"])


@router.post("/deliver", status_code=status.HTTP_200_OK)
async def deliver(payload: DeliverRequest, agent: RelayAgentDep) -> dict[str, Any]:
    """Post a relayed message into the local destination channel.

    Repeated deliveries of the same message are posted again; deduplication
    belongs to the destination.

    Args:
        payload: Target endpoint and the relayed message
        agent: Relay agent

    Returns:
        Dictionary with status ``relayed`` and the local message id
    """
    local_id = await agent.deliver(payload.to_envelope(), payload.target)
    return {"status": "relayed", "messageId": local_id}


@router.get("/relay/status")
async def relay_status(agent: RelayAgentDep) -> dict[str, Any]:
    """Report joined endpoints and hub client health."""
    return {
        "joined": sorted(str(endpoint) for endpoint in agent.joined),
        "hub": {
            "circuit_breaker": agent.hub.get_circuit_breaker_status(),
            "metrics": agent.hub.get_metrics(),
        },
    }
