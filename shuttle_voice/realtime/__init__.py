"""
Real-Time Voice Streaming Package

Session management for bidirectional speech-to-speech conversations:
- Session queue and async iterator feeding the model stream
- Per-session event dispatch
- Tool-call bridge to the knowledge bases
- Stream sessions with bounded audio backpressure
- The client orchestrator owning every session
- WebSocket transport adapter
"""

from .client import BidirectionalStreamClient, SessionExistsError, SessionNotFoundError
from .connection import ClientMessage, VoiceConnectionHandler
from .events import EventDispatcher, EventType
from .session import SessionState
from .session_queue import SessionEventIterator, create_session_iterable
from .stream_session import StreamSession
from .tool_bridge import ToolCallBridge, ToolQuery, UnsupportedToolError, parse_tool_use_content

__all__ = [
    "BidirectionalStreamClient",
    "SessionExistsError",
    "SessionNotFoundError",
    "ClientMessage",
    "VoiceConnectionHandler",
    "EventDispatcher",
    "EventType",
    "SessionState",
    "SessionEventIterator",
    "create_session_iterable",
    "StreamSession",
    "ToolCallBridge",
    "ToolQuery",
    "UnsupportedToolError",
    "parse_tool_use_content",
]
