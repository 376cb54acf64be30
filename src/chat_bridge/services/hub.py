"""Hub operations: registry membership and publish."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from chat_bridge.core.settings import settings
from chat_bridge.models import Endpoint, Envelope
from chat_bridge.services.broadcaster import Broadcaster
from chat_bridge.services.registry import RegistryStore, get_registry

# Configure logger for this module
logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"@everyone|@here|<@[!&]?\d+>")

STATUS_JOINED = "joined"
STATUS_LEFT = "left"
STATUS_ACCEPTED = "accepted"
STATUS_BLOCKED = "blocked"


@dataclass(frozen=True)
class Ack:
    """Acknowledgement returned by every hub operation."""

    status: str
    changed: bool = False
    message_id: str | None = None
    targets: list[Endpoint] = field(default_factory=list)


def contains_mention(content: str) -> bool:
    """Return True if the content would ping users in the destination channels."""
    return bool(MENTION_PATTERN.search(content or ""))


class HubService:
    """Registry owner and publish entry point of the hub."""

    def __init__(
        self,
        registry: RegistryStore,
        broadcaster: Broadcaster,
        *,
        block_mentions: bool | None = None,
    ) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        self.block_mentions = settings.block_mentions if block_mentions is None else block_mentions

    async def join(self, endpoint: Endpoint, deliver_url: str | None = None) -> Ack:
        """Register an endpoint; joining twice is a no-op."""
        added = await self.registry.add(endpoint)
        if deliver_url:
            await self.registry.set_route(endpoint.installation_id, deliver_url)
        if added:
            logger.info("Joined %s", endpoint)
        else:
            logger.info("Already joined %s", endpoint)
        return Ack(status=STATUS_JOINED, changed=added)

    async def leave(self, endpoint: Endpoint) -> Ack:
        """Deregister an endpoint; leaving an unknown endpoint succeeds."""
        removed = await self.registry.remove(endpoint)
        logger.info("Left %s (was registered: %s)", endpoint, removed)
        return Ack(status=STATUS_LEFT, changed=removed)

    async def publish(self, envelope: Envelope) -> Ack:
        """Fan an envelope out to every other endpoint without waiting for delivery."""
        if self.block_mentions and contains_mention(envelope.content):
            self.broadcaster.metrics.blocked += 1
            logger.info("Mention blocked for %s from %s", envelope.message_id, envelope.source)
            return Ack(status=STATUS_BLOCKED, message_id=envelope.message_id)

        targets = await self.broadcaster.publish(envelope)
        return Ack(
            status=STATUS_ACCEPTED,
            changed=bool(targets),
            message_id=envelope.message_id,
            targets=targets,
        )

    async def registry_size(self) -> int:
        return await self.registry.size()

    async def shutdown(self, grace_seconds: float | None = None) -> None:
        await self.broadcaster.shutdown(grace_seconds)
        await self.registry.close()


def build_hub_service(registry: RegistryStore | None = None) -> HubService:
    """Create the hub service wired to the configured registry store."""
    store = registry or get_registry()
    return HubService(store, Broadcaster(store))
