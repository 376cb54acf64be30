"""Publish endpoint: accept a message and dispatch its fan-out."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Response, status

from chat_bridge.api.dependencies import HubServiceDep
from chat_bridge.schemas.messages import PublishRequest
from chat_bridge.services.hub import STATUS_BLOCKED

router = APIRouter(tags=["publish"])


@router.post("/publish", status_code=status.HTTP_202_ACCEPTED)
async def publish(payload: PublishRequest, hub: HubServiceDep, response: Response) -> dict[str, Any]:
    """Accept a message for asynchronous fan-out.

    The response only confirms that deliveries were dispatched; per-target
    failures are reported through the hub's metrics and logs.

    Args:
        payload: Source endpoint and message payload
        hub: Hub service
        response: Outgoing response, used to downgrade the status for blocked content

    Returns:
        Dictionary with the status, message id and number of targets
    """
    ack = await hub.publish(payload.to_envelope())
    if ack.status == STATUS_BLOCKED:
        response.status_code = status.HTTP_200_OK
    return {"status": ack.status, "messageId": ack.message_id, "targets": len(ack.targets)}
