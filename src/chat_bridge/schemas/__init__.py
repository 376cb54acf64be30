"""Pydantic schemas for the chat bridge wire format."""

from .messages import DeliverRequest, DeliverResponse, PublishRequest, PublishResponse
from .registry import JoinRequest, LeaveRequest, StatusResponse

__all__ = [
    "DeliverRequest",
    "DeliverResponse",
    "JoinRequest",
    "LeaveRequest",
    "PublishRequest",
    "PublishResponse",
    "StatusResponse",
]
