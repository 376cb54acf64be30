"""Operational endpoints exposing hub state."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from chat_bridge.api.dependencies import HubServiceDep
from chat_bridge.core.settings import settings

router = APIRouter(tags=["system"])


@router.get("/metrics")
async def get_metrics(hub: HubServiceDep) -> dict[str, Any]:
    """Return fan-out counters and registry size.

    This is the observable failure signal for deliveries that exhausted their
    retry budget.

    Args:
        hub: Hub service

    Returns:
        Dictionary with registry, delivery and policy sections
    """
    return {
        "registry": {
            "backend": hub.registry.backend_name,
            "size": await hub.registry_size(),
        },
        "delivery": {
            **hub.broadcaster.metrics.snapshot(),
            "in_flight": hub.broadcaster.in_flight,
        },
        "policy": {
            "max_attempts": hub.broadcaster.max_attempts,
            "attempt_timeout_seconds": hub.broadcaster.attempt_timeout_seconds,
            "block_mentions": hub.block_mentions,
            "prune_after_failures": hub.broadcaster.prune_after_failures,
        },
        "app": {"name": settings.app_name, "version": settings.app_version},
    }
