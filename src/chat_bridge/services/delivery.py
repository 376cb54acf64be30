"""HTTP transport used by the hub to push messages to relay clients."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from chat_bridge.core.errors import RelayError
from chat_bridge.core.settings import settings
from chat_bridge.schemas.messages import DeliverRequest

# Configure logger for this module
logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_BAD_REQUEST = 400

DELIVER_PATH = "/deliver"


class DeliveryAttemptError(RelayError):
    """One delivery attempt failed; the broadcaster decides whether to retry."""


class DeliveryTransport(Protocol):
    """Anything able to push one deliver request to a relay client."""

    async def send(self, deliver_url: str, request: DeliverRequest) -> None: ...

    async def close(self) -> None: ...


@dataclass
class DeliveryMetrics:
    """Counters describing fan-out activity since the hub started."""

    publishes: int = 0
    blocked: int = 0
    dispatched: int = 0
    delivered: int = 0
    failed: int = 0
    retries: int = 0
    pruned: int = 0
    total_delivery_time: float = 0.0
    failures_by_installation: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_success(self, elapsed: float) -> None:
        self.delivered += 1
        self.total_delivery_time += elapsed

    def record_failure(self, installation_id: str) -> None:
        self.failed += 1
        self.failures_by_installation[installation_id] += 1

    def get_average_delivery_time(self) -> float:
        """Get average time spent on successful deliveries."""
        return self.total_delivery_time / self.delivered if self.delivered > 0 else 0.0

    def snapshot(self) -> dict[str, Any]:
        return {
            "publishes": self.publishes,
            "blocked": self.blocked,
            "dispatched": self.dispatched,
            "delivered": self.delivered,
            "failed": self.failed,
            "retries": self.retries,
            "pruned": self.pruned,
            "average_delivery_time": self.get_average_delivery_time(),
            "failures_by_installation": dict(self.failures_by_installation),
        }


class HttpDeliveryTransport:
    """Posts deliver requests to ``<deliver_url>/deliver`` with httpx."""

    def __init__(
        self,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.delivery_timeout_seconds
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    async def send(self, deliver_url: str, request: DeliverRequest) -> None:
        client = await self._ensure_client()
        url = deliver_url.rstrip("/") + DELIVER_PATH
        start_time = time.time()
        try:
            response = await client.post(url, json=request.to_wire())
        except httpx.HTTPError as exc:
            raise DeliveryAttemptError(f"POST {url} failed: {exc!r}") from exc

        logger.debug(
            "Relayed %s to %s/%s: %s (%.3fs)",
            request.message_id,
            request.target_installation_id,
            request.target_channel_id,
            response.status_code,
            time.time() - start_time,
        )
        if response.status_code >= HTTP_BAD_REQUEST:
            raise DeliveryAttemptError(f"POST {url} answered {response.status_code}")

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
