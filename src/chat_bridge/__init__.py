# src/chat_bridge/__init__.py
"""Hub-and-spoke chat bridge: endpoint registry, fan-out broadcaster and relay client."""

__version__ = "0.1.0"
