"""
Shuttle Voice - Source Package

Bidirectional speech-to-speech session manager for the shuttle booking and
trip-history assistant.

This package provides:
- Per-connection streaming sessions over a duplex model-inference stream
- Audio buffering with bounded backpressure
- Typed dispatch of inbound model events to connection handlers
- Knowledge base lookups for model-issued tool calls
- A WebSocket transport for browser clients (see api_server.py)
"""

__version__ = "1.0.0"

from shuttle_voice.config import settings

__all__ = ["settings", "__version__"]
