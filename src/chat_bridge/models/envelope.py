"""Core value objects passed between the hub and relay clients."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Endpoint:
    """A destination mailbox: one channel inside one installation.

    Equality and hashing are structural, so two endpoints with the same
    identifiers collapse into one registry entry.
    """

    installation_id: str
    channel_id: str

    def to_key(self) -> str:
        """Return the canonical string stored in the shared registry set."""
        return json.dumps(
            {"channelId": self.channel_id, "installationId": self.installation_id},
            sort_keys=True,
            separators=(",", ":"),
        )

    @classmethod
    def from_key(cls, key: str | bytes) -> Endpoint:
        """Parse a registry member produced by :meth:`to_key`."""
        if isinstance(key, bytes):
            key = key.decode("utf-8")
        payload = json.loads(key)
        return cls(
            installation_id=str(payload["installationId"]),
            channel_id=str(payload["channelId"]),
        )

    def __str__(self) -> str:
        return f"{self.installation_id}/{self.channel_id}"


@dataclass(frozen=True)
class Attachment:
    """A file reference carried alongside a message."""

    url: str
    name: str | None = None


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_message_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Envelope:
    """A published message travelling through the relay.

    Only ``source``, ``author_id`` and ``content`` are required; the remaining
    fields are presentation metadata that the relay carries untouched.
    """

    source: Endpoint
    author_id: str
    content: str
    timestamp: int = field(default_factory=_now_ms)
    message_id: str = field(default_factory=_new_message_id)
    author_name: str | None = None
    author_avatar: str | None = None
    origin_name: str | None = None
    reply_to: str | None = None
    reply_content: str | None = None
    attachments: tuple[Attachment, ...] = ()


@dataclass
class DeliveryAttempt:
    """In-flight state of one fan-out leg; never persisted."""

    target: Endpoint
    envelope: Envelope
    attempt_count: int = 0
    last_error: str | None = None
