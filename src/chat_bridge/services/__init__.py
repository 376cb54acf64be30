"""Hub and relay services for the chat bridge."""

from .broadcaster import Broadcaster
from .hub import Ack, HubService, build_hub_service
from .hub_client import HubClient
from .registry import InMemoryRegistry, RedisRegistry, RegistryStore, SqlRegistry
from .relay import Destination, LoggingDestination, RelayAgent

__all__ = [
    "Ack",
    "Broadcaster",
    "Destination",
    "HubClient",
    "HubService",
    "InMemoryRegistry",
    "LoggingDestination",
    "RedisRegistry",
    "RegistryStore",
    "RelayAgent",
    "SqlRegistry",
    "build_hub_service",
]
