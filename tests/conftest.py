# tests/conftest.py
from __future__ import annotations

import asyncio
import os
from collections.abc import Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ["HUB_REGISTRY_BACKEND"] = "memory"
os.environ.setdefault("DATABASE_URL", "sqlite://")

from chat_bridge.core.errors import DeliveryFailed
from chat_bridge.main import app as hub_fastapi_app
from chat_bridge.models import Endpoint, Envelope
from chat_bridge.schemas.messages import DeliverRequest
from chat_bridge.services.broadcaster import Broadcaster
from chat_bridge.services.delivery import DeliveryAttemptError
from chat_bridge.services.hub import HubService
from chat_bridge.services.registry import InMemoryRegistry, set_registry

DELIVER_URL = "http://relay.test"


class RecordingTransport:
    """Delivery transport that records every attempt instead of doing HTTP."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, DeliverRequest]] = []
        self.failing_installations: set[str] = set()
        self.failures_before_success: dict[str, int] = {}
        self.delay_seconds: float = 0.0
        self.gate: asyncio.Event | None = None
        self.closed = False

    async def send(self, deliver_url: str, request: DeliverRequest) -> None:
        self.calls.append((deliver_url, request))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        installation = request.target_installation_id
        if installation in self.failing_installations:
            raise DeliveryAttemptError(f"{installation} is down")
        remaining = self.failures_before_success.get(installation, 0)
        if remaining:
            self.failures_before_success[installation] = remaining - 1
            raise DeliveryAttemptError(f"{installation} flaked")

    async def close(self) -> None:
        self.closed = True

    def targets(self) -> list[Endpoint]:
        return [request.target for _, request in self.calls]

    def calls_for(self, installation_id: str) -> list[DeliverRequest]:
        return [
            request
            for _, request in self.calls
            if request.target_installation_id == installation_id
        ]


@pytest.fixture()
def registry() -> InMemoryRegistry:
    return InMemoryRegistry()


@pytest.fixture()
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture()
def failures() -> list[DeliveryFailed]:
    return []


@pytest.fixture()
def broadcaster(
    registry: InMemoryRegistry,
    transport: RecordingTransport,
    failures: list[DeliveryFailed],
) -> Broadcaster:
    instance = Broadcaster(
        registry,
        transport,
        max_attempts=3,
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
        attempt_timeout_seconds=1.0,
        concurrency=8,
        default_deliver_url=DELIVER_URL,
        prune_after_failures=0,
    )
    instance.add_failure_hook(failures.append)
    return instance


@pytest.fixture()
def hub_service(registry: InMemoryRegistry, broadcaster: Broadcaster) -> HubService:
    return HubService(registry, broadcaster, block_mentions=True)


@pytest.fixture()
def make_envelope() -> Any:
    def _make(
        installation_id: str = "guildA",
        channel_id: str = "chanA",
        author_id: str = "u1",
        content: str = "hi",
        **extra: Any,
    ) -> Envelope:
        return Envelope(
            source=Endpoint(installation_id=installation_id, channel_id=channel_id),
            author_id=author_id,
            content=content,
            **extra,
        )

    return _make


@pytest.fixture()
def app() -> FastAPI:
    return hub_fastapi_app


@pytest.fixture()
def client(app: FastAPI, hub_service: HubService) -> Iterator[TestClient]:
    set_registry(hub_service.registry)
    try:
        with TestClient(app, base_url="http://test") as test_client:
            app.state.hub = hub_service
            yield test_client
    finally:
        set_registry(None)


@pytest.fixture()
def drain_hub(client: TestClient, hub_service: HubService) -> Any:
    """Return a callable blocking until the hub's background deliveries are done."""

    def _drain() -> None:
        assert client.portal is not None
        client.portal.call(hub_service.broadcaster.drain)

    return _drain
