"""Registry membership endpoints for the hub."""

from __future__ import annotations

from fastapi import APIRouter, status

from chat_bridge.api.dependencies import HubServiceDep
from chat_bridge.schemas.registry import JoinRequest, LeaveRequest

router = APIRouter(prefix="/registry", tags=["registry"])


@router.post("/join", status_code=status.HTTP_200_OK)
async def join(payload: JoinRequest, hub: HubServiceDep) -> dict[str, str]:
    """Register an endpoint for fan-out.

    Joining an endpoint that is already registered still answers ``joined``.

    Args:
        payload: Installation and channel identifiers, plus an optional delivery URL
        hub: Hub service

    Returns:
        Acknowledgement with status ``joined``
    """
    ack = await hub.join(payload.to_endpoint(), payload.deliver_url)
    return {"status": ack.status}


@router.post("/leave", status_code=status.HTTP_200_OK)
async def leave(payload: LeaveRequest, hub: HubServiceDep) -> dict[str, str]:
    """Deregister an endpoint; unknown endpoints also answer ``left``."""
    ack = await hub.leave(payload.to_endpoint())
    return {"status": ack.status}
