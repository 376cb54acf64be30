# src/chat_bridge/models/__init__.py
"""Value objects for the relay; ORM models live in ``registry_entry``."""

from .envelope import Attachment, DeliveryAttempt, Endpoint, Envelope

__all__ = [
    "Attachment",
    "DeliveryAttempt",
    "Endpoint",
    "Envelope",
]
