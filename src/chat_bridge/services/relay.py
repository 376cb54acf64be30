"""Relay agent bridging a local message source and the hub.

The agent keeps track of the endpoints it joined, forwards locally observed
messages from those endpoints to the hub and writes relayed messages into a
local destination. It never deduplicates deliveries; a destination that cares
about duplicates can key on ``Envelope.message_id``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

from chat_bridge.core.errors import UnreachableHub
from chat_bridge.models import Endpoint, Envelope
from chat_bridge.services.hub_client import HubClient

# Configure logger for this module
logger = logging.getLogger(__name__)

REPLY_QUOTE_LIMIT = 180


class Destination(Protocol):
    """Local sink that posts relayed messages into a channel.

    Implementations raise ``UnknownDestination`` when the channel no longer
    exists and ``DestinationError`` for any other posting failure.
    """

    async def post(self, target: Endpoint, envelope: Envelope) -> str | None: ...


def format_relayed_message(envelope: Envelope) -> str:
    """Render an envelope as the plain text shown in the destination channel."""
    author = envelope.author_name or envelope.author_id
    if envelope.origin_name:
        author = f"{author} @ {envelope.origin_name}"

    lines = []
    if envelope.reply_content:
        lines.append(f"> {envelope.reply_content[:REPLY_QUOTE_LIMIT]}")
    lines.append(f"**{author}**: {envelope.content}")
    lines.extend(attachment.url for attachment in envelope.attachments)
    return "\n".join(lines)


class LoggingDestination:
    """Destination that writes relayed messages to the log."""

    async def post(self, target: Endpoint, envelope: Envelope) -> str | None:
        local_id = uuid.uuid4().hex
        logger.info("[%s] %s", target, format_relayed_message(envelope))
        return local_id


class RelayAgent:
    """Per-installation bridge between the local chat and the hub."""

    def __init__(self, hub: HubClient, destination: Destination | None = None) -> None:
        self.hub = hub
        self.destination = destination or LoggingDestination()
        self._joined: set[Endpoint] = set()

    @property
    def joined(self) -> frozenset[Endpoint]:
        return frozenset(self._joined)

    def is_joined(self, endpoint: Endpoint) -> bool:
        return endpoint in self._joined

    async def join(self, endpoint: Endpoint) -> str:
        """Register an endpoint with the hub.

        Raises:
            UnreachableHub: If the hub cannot be contacted; retry with backoff
        """
        status = await self.hub.join(endpoint)
        self._joined.add(endpoint)
        logger.info("Joined %s (%s)", endpoint, status)
        return status

    async def leave(self, endpoint: Endpoint) -> str:
        """Deregister an endpoint; unknown endpoints are not an error."""
        status = await self.hub.leave(endpoint)
        self._joined.discard(endpoint)
        logger.info("Left %s (%s)", endpoint, status)
        return status

    async def forward(self, envelope: Envelope) -> str:
        """Send a message to the hub for fan-out.

        Raises:
            UnreachableHub: After the bounded retry is exhausted
        """
        body = await self.hub.forward(envelope)
        return str(body.get("status", ""))

    async def observe(self, envelope: Envelope) -> bool:
        """Forward a local message if its channel is joined, dropping it when the hub is down.

        Returns:
            True if the hub accepted the message for fan-out
        """
        if not self.is_joined(envelope.source):
            return False
        try:
            status = await self.forward(envelope)
        except UnreachableHub as exc:
            logger.warning("Dropping %s from %s: %s", envelope.message_id, envelope.source, exc)
            return False
        return status == "accepted"

    async def deliver(self, envelope: Envelope, target: Endpoint) -> str | None:
        """Write a relayed envelope into the local destination for ``target``."""
        local_id = await self.destination.post(target, envelope)
        logger.debug("Relayed %s into %s as %s", envelope.message_id, target, local_id)
        return local_id
