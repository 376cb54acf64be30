"""Hub client used by relay installations.

This module provides the HubClient class that handles all communication
between a relay installation and the hub. It includes:

- HTTP client with bounded retry and exponential backoff
- Circuit breaker pattern for fault tolerance
- Metrics collection for monitoring
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from chat_bridge.core.errors import MalformedRequest, RelayError, UnreachableHub
from chat_bridge.core.settings import settings
from chat_bridge.models import Endpoint, Envelope
from chat_bridge.schemas.messages import PublishRequest

# Configure logger for this module
logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_BAD_REQUEST = 400
HTTP_INTERNAL_SERVER_ERROR = 500


class HubRequestError(RelayError):
    """A single request to the hub failed and may be retried."""


class CircuitState(Enum):
    """States of the hub circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # one probe allowed through


@dataclass
class HubClientMetrics:
    """Counters for requests sent to the hub since the client was created."""

    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_response_time: float = 0.0
    last_error: str | None = None
    error_counts_by_type: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    endpoint_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_request(
        self, endpoint: str, response_time: float, error_type: str | None = None
    ) -> None:
        self.request_count += 1
        self.total_response_time += response_time
        self.endpoint_counts[endpoint] += 1
        if error_type is None:
            self.success_count += 1
            return
        self.error_count += 1
        self.error_counts_by_type[error_type] += 1
        self.last_error = f"{endpoint}: {error_type}"

    def get_average_response_time(self) -> float:
        """Get average response time."""
        return self.total_response_time / self.request_count if self.request_count > 0 else 0.0


@dataclass
class CircuitBreaker:
    """Fails hub calls fast after ``failure_threshold`` consecutive errors.

    After ``recovery_timeout`` seconds the breaker lets a probe through; a
    successful probe closes it again, a failed one reopens it.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0

    _state: CircuitState = CircuitState.CLOSED
    _consecutive_failures: int = 0
    _opened_at: float = 0.0

    def is_open(self) -> bool:
        if self._state is CircuitState.OPEN:
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state is CircuitState.OPEN

    def record_success(self) -> None:
        self._consecutive_failures = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if (
            self._state is CircuitState.HALF_OPEN
            or self._consecutive_failures >= self.failure_threshold
        ):
            if self._state is not CircuitState.OPEN:
                logger.warning(
                    "Hub circuit opened after %d consecutive failure(s)",
                    self._consecutive_failures,
                )
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()

    def get_state(self) -> CircuitState:
        return self._state


@dataclass(frozen=True)
class HubClientConfig:
    """Immutable configuration for hub requests."""

    hub_url: str
    deliver_url: str | None
    timeout_seconds: float
    max_attempts: int
    backoff_base_seconds: float


def load_hub_client_config() -> HubClientConfig:
    """Build configuration object from global settings."""

    return HubClientConfig(
        hub_url=settings.relay_hub_url,
        deliver_url=settings.relay_deliver_url,
        timeout_seconds=float(settings.relay_http_timeout_seconds),
        max_attempts=max(1, settings.relay_max_attempts),
        backoff_base_seconds=float(settings.relay_backoff_base_seconds),
    )


class HubClient:
    """HTTP client wrapper for hub interactions."""

    def __init__(
        self,
        config: HubClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self.config = config or load_hub_client_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = circuit_breaker or CircuitBreaker()
        self._metrics = HubClientMetrics()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.hub_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    async def _request(
        self, method: str, path: str, json_data: Mapping[str, Any] | None = None
    ) -> httpx.Response:
        client = await self._ensure_client()
        start_time = time.monotonic()
        endpoint = f"{method} {path}"
        error_type: str | None = "unexpected"

        try:
            response = await client.request(method, path, json=json_data)
            if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
                self._circuit_breaker.record_failure()
                error_type = f"http_{response.status_code}"
                raise HubRequestError(f"Hub responded with {response.status_code}")
            # 4xx means the hub is up and rejected the payload
            self._circuit_breaker.record_success()
            if response.status_code >= HTTP_BAD_REQUEST:
                error_type = f"http_{response.status_code}"
                raise MalformedRequest(_response_detail(response))
            error_type = None
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            error_type = "network_error"
            raise HubRequestError(f"Hub request failed: {exc!r}") from exc
        finally:
            self._metrics.record_request(endpoint, time.monotonic() - start_time, error_type)

        return response

    async def _call(
        self, method: str, path: str, json_data: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """Send a request with bounded retries.

        Raises:
            UnreachableHub: If every attempt failed or the circuit is open
            MalformedRequest: If the hub rejected the payload
        """
        last_error: Exception | None = None
        for attempt in range(1, self.config.max_attempts + 1):
            if self._circuit_breaker.is_open():
                raise UnreachableHub("Hub circuit breaker is open - service unavailable")
            try:
                response = await self._request(method, path, json_data)
            except HubRequestError as exc:
                last_error = exc
                logger.warning(
                    "%s %s attempt %d/%d failed: %s",
                    method,
                    path,
                    attempt,
                    self.config.max_attempts,
                    exc,
                )
                if attempt < self.config.max_attempts:
                    await asyncio.sleep(self.config.backoff_base_seconds * (2 ** (attempt - 1)))
                continue
            return _json_body(response)

        raise UnreachableHub(
            f"Hub unreachable after {self.config.max_attempts} attempt(s): {last_error}"
        ) from last_error

    async def join(self, endpoint: Endpoint) -> str:
        """Register an endpoint with the hub."""
        payload: dict[str, Any] = {
            "installationId": endpoint.installation_id,
            "channelId": endpoint.channel_id,
        }
        if self.config.deliver_url:
            payload["deliverUrl"] = self.config.deliver_url
        body = await self._call("POST", "/registry/join", payload)
        return str(body.get("status", ""))

    async def leave(self, endpoint: Endpoint) -> str:
        """Deregister an endpoint from the hub."""
        body = await self._call(
            "POST",
            "/registry/leave",
            {"installationId": endpoint.installation_id, "channelId": endpoint.channel_id},
        )
        return str(body.get("status", ""))

    async def forward(self, envelope: Envelope) -> dict[str, Any]:
        """Hand a locally observed message to the hub's publish endpoint."""
        payload = PublishRequest.from_envelope(envelope).model_dump(
            by_alias=True, exclude_none=True
        )
        return await self._call("POST", "/publish", payload)

    def get_circuit_breaker_status(self) -> dict[str, Any]:
        return {
            "state": self._circuit_breaker.get_state().value,
            "is_open": self._circuit_breaker.is_open(),
        }

    def get_metrics(self) -> dict[str, Any]:
        """Get hub request metrics."""
        return {
            "request_count": self._metrics.request_count,
            "success_count": self._metrics.success_count,
            "error_count": self._metrics.error_count,
            "average_response_time": self._metrics.get_average_response_time(),
            "last_error": self._metrics.last_error,
            "error_counts_by_type": dict(self._metrics.error_counts_by_type),
            "endpoint_counts": dict(self._metrics.endpoint_counts),
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _response_detail(response: httpx.Response) -> Any:
    body = _json_body(response)
    return body.get("detail", body) or f"Hub rejected request with {response.status_code}"
