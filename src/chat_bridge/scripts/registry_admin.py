"""Utility script to inspect or edit the configured endpoint registry."""
from __future__ import annotations

import argparse
import asyncio
import sys

from chat_bridge.core.errors import StoreUnavailable
from chat_bridge.models import Endpoint
from chat_bridge.services.registry import RegistryStore, build_registry, describe_endpoint


async def list_endpoints(store: RegistryStore) -> list[str]:
    """Return every registered endpoint as a JSON line, sorted for stable output."""
    members = await store.members()
    ordered = sorted(members, key=lambda item: (item.installation_id, item.channel_id))
    return [describe_endpoint(endpoint) for endpoint in ordered]


async def run(args: argparse.Namespace, store: RegistryStore) -> int:
    try:
        if args.command == "list":
            for line in await list_endpoints(store):
                print(line)
            routes = await store.routes()
            for installation_id, url in sorted(routes.items()):
                print(f"[registry_admin] route {installation_id} -> {url}", file=sys.stderr)
            return 0

        endpoint = Endpoint(installation_id=args.installation_id, channel_id=args.channel_id)
        if args.command == "join":
            if args.deliver_url:
                await store.set_route(endpoint.installation_id, args.deliver_url)
            added = await store.add(endpoint)
            print(f"[registry_admin] {'joined' if added else 'already joined'} {endpoint}")
        else:
            removed = await store.remove(endpoint)
            print(f"[registry_admin] {'left' if removed else 'not registered'} {endpoint}")
        return 0
    finally:
        await store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect or edit the endpoint registry")
    parser.add_argument(
        "--backend",
        default=None,
        choices=["redis", "sql", "memory"],
        help="Override the registry backend (defaults to HUB_REGISTRY_BACKEND)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="Print every registered endpoint")

    join = sub.add_parser("join", help="Register an endpoint")
    join.add_argument("installation_id")
    join.add_argument("channel_id")
    join.add_argument("--deliver-url", default=None, help="Delivery URL for the installation")

    leave = sub.add_parser("leave", help="Deregister an endpoint")
    leave.add_argument("installation_id")
    leave.add_argument("channel_id")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        store = build_registry(args.backend)
        code = asyncio.run(run(args, store))
    except StoreUnavailable as exc:
        print(f"[registry_admin] ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
