"""Fan-out of published envelopes to every registered endpoint.

``Broadcaster.publish`` snapshots the registry, drops the source endpoint and
spawns one asyncio task per remaining target. It returns as soon as the tasks
exist; each task retries its own delivery with exponential backoff and reports
exhaustion through the failure signal instead of raising to the publisher.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from typing import cast

from chat_bridge.core.errors import DeliveryFailed, RelayError, StoreUnavailable
from chat_bridge.core.settings import settings
from chat_bridge.models import DeliveryAttempt, Endpoint, Envelope
from chat_bridge.schemas.messages import DeliverRequest
from chat_bridge.services.delivery import (
    DeliveryMetrics,
    DeliveryTransport,
    HttpDeliveryTransport,
)
from chat_bridge.services.registry import RegistryStore

# Configure logger for this module
logger = logging.getLogger(__name__)

FailureHook = Callable[[DeliveryFailed], Awaitable[None] | None]

_FROM_SETTINGS = object()


class Broadcaster:
    """Dispatches deliveries for each publish and tracks them until they finish."""

    def __init__(
        self,
        registry: RegistryStore,
        transport: DeliveryTransport | None = None,
        *,
        max_attempts: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        attempt_timeout_seconds: float | None = None,
        concurrency: int | None = None,
        default_deliver_url: str | None | object = _FROM_SETTINGS,
        prune_after_failures: int | None = None,
    ) -> None:
        self.registry = registry
        self.transport = transport or HttpDeliveryTransport()
        self.max_attempts = max(1, _pick(max_attempts, settings.delivery_max_attempts))
        self.backoff_base_seconds = _pick(
            backoff_base_seconds, settings.delivery_backoff_base_seconds
        )
        self.backoff_max_seconds = _pick(
            backoff_max_seconds, settings.delivery_backoff_max_seconds
        )
        self.attempt_timeout_seconds = _pick(
            attempt_timeout_seconds, settings.delivery_timeout_seconds
        )
        # None disables the fallback route; omitted means HUB_DEFAULT_DELIVER_URL
        self.default_deliver_url: str | None = (
            settings.default_deliver_url
            if default_deliver_url is _FROM_SETTINGS
            else cast("str | None", default_deliver_url)
        )
        self.prune_after_failures = _pick(prune_after_failures, settings.prune_after_failures)
        self.metrics = DeliveryMetrics()
        self._semaphore = asyncio.Semaphore(
            max(1, _pick(concurrency, settings.delivery_concurrency))
        )
        self._tasks: set[asyncio.Task[None]] = set()
        self._failure_hooks: list[FailureHook] = []
        self._failure_streaks: dict[Endpoint, int] = {}

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def add_failure_hook(self, hook: FailureHook) -> None:
        """Register a callable notified with every DeliveryFailed."""
        self._failure_hooks.append(hook)

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.backoff_base_seconds * (2 ** max(0, attempt - 1))
        return min(delay, self.backoff_max_seconds)

    async def publish(self, envelope: Envelope) -> list[Endpoint]:
        """Dispatch one delivery per registered endpoint except the source.

        Args:
            envelope: Message to fan out

        Returns:
            The targets a delivery was dispatched to

        Raises:
            StoreUnavailable: If the registry snapshot could not be read
        """
        snapshot = await self.registry.members()
        routes = await self.registry.routes()
        targets = sorted(
            (endpoint for endpoint in snapshot if endpoint != envelope.source),
            key=lambda endpoint: (endpoint.installation_id, endpoint.channel_id),
        )

        self.metrics.publishes += 1
        for target in targets:
            attempt = DeliveryAttempt(target=target, envelope=envelope)
            deliver_url = routes.get(target.installation_id) or self.default_deliver_url
            task = asyncio.create_task(
                self._run_delivery(attempt, deliver_url),
                name=f"deliver:{envelope.message_id}:{target}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            self.metrics.dispatched += 1

        logger.info(
            "Dispatched %s from %s to %d target(s)",
            envelope.message_id,
            envelope.source,
            len(targets),
        )
        return targets

    async def _run_delivery(self, attempt: DeliveryAttempt, deliver_url: str | None) -> None:
        try:
            await self._deliver_with_retry(attempt, deliver_url)
        except asyncio.CancelledError:
            logger.warning(
                "Delivery of %s to %s abandoned after %d attempt(s)",
                attempt.envelope.message_id,
                attempt.target,
                attempt.attempt_count,
            )
            raise
        except Exception as exc:
            logger.error(
                "Unexpected error delivering %s to %s: %s",
                attempt.envelope.message_id,
                attempt.target,
                exc,
                exc_info=True,
            )
            attempt.last_error = repr(exc)
            await self._record_failure(attempt)

    async def _deliver_with_retry(
        self, attempt: DeliveryAttempt, deliver_url: str | None
    ) -> None:
        if not deliver_url:
            attempt.last_error = "no delivery route"
            await self._record_failure(attempt)
            return

        request = DeliverRequest.from_envelope(attempt.envelope, attempt.target)
        while attempt.attempt_count < self.max_attempts:
            attempt.attempt_count += 1
            start_time = time.time()
            try:
                async with self._semaphore:
                    await asyncio.wait_for(
                        self.transport.send(deliver_url, request),
                        timeout=self.attempt_timeout_seconds,
                    )
            except (RelayError, OSError, TimeoutError, asyncio.TimeoutError) as exc:
                attempt.last_error = str(exc) or type(exc).__name__
                logger.debug(
                    "Attempt %d/%d for %s to %s failed: %s",
                    attempt.attempt_count,
                    self.max_attempts,
                    attempt.envelope.message_id,
                    attempt.target,
                    attempt.last_error,
                )
                if attempt.attempt_count < self.max_attempts:
                    self.metrics.retries += 1
                    await asyncio.sleep(self.backoff_delay(attempt.attempt_count))
                continue

            self.metrics.record_success(time.time() - start_time)
            self._failure_streaks.pop(attempt.target, None)
            return

        await self._record_failure(attempt)

    async def _record_failure(self, attempt: DeliveryAttempt) -> None:
        failure = DeliveryFailed(
            target=attempt.target,
            message_id=attempt.envelope.message_id,
            attempts=attempt.attempt_count,
            reason=attempt.last_error or "unknown",
        )
        self.metrics.record_failure(attempt.target.installation_id)
        logger.warning("%s", failure)

        for hook in list(self._failure_hooks):
            try:
                result = hook(failure)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error("Delivery failure hook raised: %s", exc, exc_info=True)

        if self.prune_after_failures <= 0:
            return
        streak = self._failure_streaks.get(attempt.target, 0) + 1
        self._failure_streaks[attempt.target] = streak
        if streak >= self.prune_after_failures:
            await self._prune(attempt.target, streak)

    async def _prune(self, target: Endpoint, streak: int) -> None:
        try:
            removed = await self.registry.remove(target)
        except StoreUnavailable as exc:
            logger.error("Could not prune %s after %d failures: %s", target, streak, exc)
            return
        self._failure_streaks.pop(target, None)
        if removed:
            self.metrics.pruned += 1
            logger.warning("Pruned %s after %d consecutive failed deliveries", target, streak)

    async def drain(self) -> None:
        """Wait until every dispatched delivery has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, grace_seconds: float | None = None) -> None:
        """Let in-flight deliveries finish within the grace period, then cancel them."""
        grace = _pick(grace_seconds, settings.shutdown_grace_seconds)
        pending_tasks = set(self._tasks)
        if pending_tasks:
            _, pending = await asyncio.wait(pending_tasks, timeout=grace)
            if pending:
                logger.warning(
                    "Abandoning %d delivery task(s) after %.1fs grace period",
                    len(pending),
                    grace,
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        await self.transport.close()


def _pick(value, default):  # type: ignore[no-untyped-def]
    return default if value is None else value
