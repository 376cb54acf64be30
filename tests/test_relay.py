"""Tests for the relay client: hub client, agent and delivery endpoint."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from chat_bridge.core.errors import (
    DestinationError,
    MalformedRequest,
    UnknownDestination,
    UnreachableHub,
)
from chat_bridge.models import Endpoint, Envelope
from chat_bridge.relay_main import create_relay_app
from chat_bridge.services.broadcaster import Broadcaster
from chat_bridge.services.delivery import HttpDeliveryTransport
from chat_bridge.services.hub_client import (
    CircuitBreaker,
    CircuitState,
    HubClient,
    HubClientConfig,
)
from chat_bridge.services.registry import InMemoryRegistry
from chat_bridge.services.relay import RelayAgent, format_relayed_message

A = Endpoint("guildA", "chanA")
B = Endpoint("guildB", "chanB")

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingDestination:
    """Destination keeping every posted message in memory."""

    def __init__(self) -> None:
        self.posted: list[tuple[Endpoint, Envelope]] = []
        self.missing_channels: set[str] = set()
        self.broken_channels: set[str] = set()

    async def post(self, target: Endpoint, envelope: Envelope) -> str | None:
        if target.channel_id in self.missing_channels:
            raise UnknownDestination(f"{target} no longer exists")
        if target.channel_id in self.broken_channels:
            raise DestinationError(f"posting into {target} failed")
        self.posted.append((target, envelope))
        return f"local-{len(self.posted)}"


def _config(**overrides: Any) -> HubClientConfig:
    values: dict[str, Any] = {
        "hub_url": "http://hub.test",
        "deliver_url": "http://relay-a.test",
        "timeout_seconds": 1.0,
        "max_attempts": 3,
        "backoff_base_seconds": 0.0,
    }
    values.update(overrides)
    return HubClientConfig(**values)


def _hub_client(handler: Handler, **overrides: Any) -> HubClient:
    breaker = overrides.pop("circuit_breaker", None)
    return HubClient(
        _config(**overrides),
        transport=httpx.MockTransport(handler),
        circuit_breaker=breaker,
    )


@pytest.mark.asyncio
async def test_join_sends_endpoint_and_deliver_url() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "joined"})

    client = _hub_client(handler)
    status = await client.join(A)
    await client.close()

    assert status == "joined"
    assert seen[0].url.path == "/registry/join"
    assert json.loads(seen[0].content) == {
        "installationId": "guildA",
        "channelId": "chanA",
        "deliverUrl": "http://relay-a.test",
    }


@pytest.mark.asyncio
async def test_forward_posts_publish_payload() -> None:
    seen: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(202, json={"status": "accepted", "messageId": "m-1", "targets": 2})

    client = _hub_client(handler)
    envelope = Envelope(source=A, author_id="u1", content="hi", message_id="m-1")
    body = await client.forward(envelope)
    await client.close()

    assert body["status"] == "accepted"
    assert seen[0]["installationId"] == "guildA"
    assert seen[0]["channelId"] == "chanA"
    assert seen[0]["authorId"] == "u1"
    assert seen[0]["content"] == "hi"
    assert seen[0]["messageId"] == "m-1"


@pytest.mark.asyncio
async def test_unreachable_hub_after_bounded_retry() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    client = _hub_client(handler)

    with pytest.raises(UnreachableHub):
        await client.join(A)
    await client.close()

    assert calls == 3
    assert client.get_metrics()["error_counts_by_type"] == {"network_error": 3}


@pytest.mark.asyncio
async def test_server_error_then_success_is_retried() -> None:
    responses = iter([httpx.Response(503), httpx.Response(200, json={"status": "left"})])

    client = _hub_client(lambda request: next(responses))
    status = await client.leave(A)
    await client.close()

    assert status == "left"
    assert client.get_metrics()["request_count"] == 2


@pytest.mark.asyncio
async def test_malformed_rejection_is_not_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(400, json={"status": "malformed", "detail": "channelId missing"})

    client = _hub_client(handler)

    with pytest.raises(MalformedRequest) as exc_info:
        await client.join(A)
    await client.close()

    assert calls == 1
    assert exc_info.value.detail == "channelId missing"


@pytest.mark.asyncio
async def test_circuit_breaker_opens_after_repeated_failures() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500)

    client = _hub_client(
        handler,
        circuit_breaker=CircuitBreaker(failure_threshold=2, recovery_timeout=60.0),
    )

    with pytest.raises(UnreachableHub):
        await client.join(A)
    assert calls == 2
    assert client.get_circuit_breaker_status() == {"state": "open", "is_open": True}

    with pytest.raises(UnreachableHub):
        await client.join(A)
    assert calls == 2
    await client.close()


def test_circuit_breaker_half_open_recovers(mocker) -> None:
    clock = mocker.patch("chat_bridge.services.hub_client.time.monotonic", return_value=100.0)
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=10.0)

    breaker.record_failure()
    assert breaker.is_open() is True

    clock.return_value = 111.0
    assert breaker.is_open() is False
    assert breaker.get_state() == CircuitState.HALF_OPEN

    breaker.record_success()
    assert breaker.get_state() == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_agent_forwards_only_joined_channels(mocker) -> None:
    hub = mocker.AsyncMock(spec=HubClient)
    hub.join.return_value = "joined"
    hub.forward.return_value = {"status": "accepted"}
    agent = RelayAgent(hub, RecordingDestination())

    await agent.join(A)

    assert await agent.observe(Envelope(source=A, author_id="u1", content="hi")) is True
    assert await agent.observe(Envelope(source=B, author_id="u1", content="hi")) is False
    hub.forward.assert_awaited_once()


@pytest.mark.asyncio
async def test_agent_drops_message_when_hub_unreachable(mocker) -> None:
    hub = mocker.AsyncMock(spec=HubClient)
    hub.join.return_value = "joined"
    hub.forward.side_effect = UnreachableHub("hub down")
    agent = RelayAgent(hub, RecordingDestination())
    await agent.join(A)

    assert await agent.observe(Envelope(source=A, author_id="u1", content="hi")) is False
    with pytest.raises(UnreachableHub):
        await agent.forward(Envelope(source=A, author_id="u1", content="hi"))


@pytest.mark.asyncio
async def test_agent_leave_forgets_endpoint(mocker) -> None:
    hub = mocker.AsyncMock(spec=HubClient)
    hub.join.return_value = "joined"
    hub.leave.return_value = "left"
    agent = RelayAgent(hub, RecordingDestination())

    await agent.join(A)
    assert await agent.leave(A) == "left"
    assert await agent.leave(A) == "left"
    assert agent.joined == frozenset()


def test_format_relayed_message_includes_reply_and_attachments() -> None:
    envelope = Envelope(
        source=A,
        author_id="u1",
        content="look",
        author_name="Ada",
        origin_name="Guild A",
        reply_content="x" * 300,
        attachments=(),
    )

    lines = format_relayed_message(envelope).split("\n")

    assert lines[0] == "> " + "x" * 180
    assert lines[1] == "**Ada @ Guild A**: look"


@pytest.fixture()
def destination() -> RecordingDestination:
    return RecordingDestination()


@pytest.fixture()
def relay_client(mocker, destination: RecordingDestination) -> Iterator[TestClient]:
    hub = mocker.AsyncMock(spec=HubClient)
    hub.get_circuit_breaker_status = mocker.Mock(return_value={"state": "closed", "is_open": False})
    hub.get_metrics = mocker.Mock(return_value={"request_count": 0})
    relay_app = create_relay_app(agent=RelayAgent(hub, destination))
    with TestClient(relay_app) as test_client:
        yield test_client


def _deliver_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "targetInstallationId": "guildB",
        "targetChannelId": "chanB",
        "authorId": "u1",
        "content": "hi",
        "sourceInstallationId": "guildA",
        "sourceChannelId": "chanA",
        "messageId": "m-1",
    }
    body.update(overrides)
    return body


def test_deliver_posts_into_destination(
    relay_client: TestClient, destination: RecordingDestination
) -> None:
    response = relay_client.post("/deliver", json=_deliver_body())

    assert response.status_code == 200
    assert response.json() == {"status": "relayed", "messageId": "local-1"}
    target, envelope = destination.posted[0]
    assert target == B
    assert envelope.source == A
    assert envelope.message_id == "m-1"
    assert envelope.content == "hi"


def test_duplicate_delivery_is_not_an_error(
    relay_client: TestClient, destination: RecordingDestination
) -> None:
    first = relay_client.post("/deliver", json=_deliver_body())
    second = relay_client.post("/deliver", json=_deliver_body())

    assert first.status_code == second.status_code == 200
    assert len(destination.posted) == 2


def test_deliver_to_missing_channel_is_gone(
    relay_client: TestClient, destination: RecordingDestination
) -> None:
    destination.missing_channels.add("chanB")

    response = relay_client.post("/deliver", json=_deliver_body())

    assert response.status_code == 410
    assert response.json()["status"] == "unknown_destination"


def test_destination_failure_is_bad_gateway(
    relay_client: TestClient, destination: RecordingDestination
) -> None:
    destination.broken_channels.add("chanB")

    response = relay_client.post("/deliver", json=_deliver_body())

    assert response.status_code == 502
    assert response.json()["status"] == "destination_error"


def test_malformed_delivery_is_rejected(
    relay_client: TestClient, destination: RecordingDestination
) -> None:
    response = relay_client.post("/deliver", json={"targetChannelId": "chanB", "content": "hi"})

    assert response.status_code == 400
    assert response.json()["status"] == "malformed"
    assert destination.posted == []


def test_relay_status_reports_hub_health(relay_client: TestClient) -> None:
    response = relay_client.get("/relay/status")

    assert response.status_code == 200
    assert response.json()["hub"]["circuit_breaker"]["state"] == "closed"


@pytest.mark.asyncio
async def test_hub_delivers_through_relay_application(mocker) -> None:
    destination = RecordingDestination()
    relay_app = create_relay_app(
        agent=RelayAgent(mocker.AsyncMock(spec=HubClient), destination)
    )
    registry = InMemoryRegistry()
    await registry.add(A)
    await registry.add(B)
    await registry.set_route("guildB", "http://relay-b.test")
    broadcaster = Broadcaster(
        registry,
        HttpDeliveryTransport(transport=httpx.ASGITransport(app=relay_app)),
        backoff_base_seconds=0.0,
        default_deliver_url=None,
    )

    await broadcaster.publish(Envelope(source=A, author_id="u1", content="hi"))
    await broadcaster.drain()
    await broadcaster.shutdown(grace_seconds=0.1)

    assert [target for target, _ in destination.posted] == [B]
    assert destination.posted[0][1].content == "hi"
    assert broadcaster.metrics.delivered == 1
