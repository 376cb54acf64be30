"""Registry-related Pydantic schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from chat_bridge.models import Endpoint
from chat_bridge.schemas.common import Identifier


class EndpointIn(BaseModel):
    """Schema identifying an endpoint in join/leave requests."""

    installation_id: Identifier = Field(..., alias="installationId", description="Installation id")
    channel_id: Identifier = Field(..., alias="channelId", description="Channel id")

    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    def to_endpoint(self) -> Endpoint:
        return Endpoint(installation_id=self.installation_id, channel_id=self.channel_id)


class JoinRequest(EndpointIn):
    """Schema for registering an endpoint with the hub."""

    deliver_url: str | None = Field(
        None,
        alias="deliverUrl",
        description="Where the hub should POST deliveries for this installation",
    )


class LeaveRequest(EndpointIn):
    """Schema for deregistering an endpoint."""


class StatusResponse(BaseModel):
    """Plain acknowledgement returned by registry operations."""

    status: str
