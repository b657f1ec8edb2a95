"""
Inbound Event Dispatch

Names of the events a session can report to its connection, and the
per-session dispatcher that routes them to registered callbacks.

Event Types:
- contentStart / textOutput / audioOutput / contentEnd: model output, verbatim
- toolUse: the model requested a knowledge-base lookup
- toolEnd: the tool request is complete and about to be resolved
- toolResult: the resolved value that was sent back to the model
- streamComplete: the inbound stream was exhausted
- error: transport fault or unrecoverable session error
- any: wildcard, receives ``{"type": <event>, "data": <payload>}`` for every event
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from shuttle_voice.logger import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[Any], Union[None, Awaitable[None]]]


class EventType:
    """Event names used on the dispatcher. Unrecognized model events keep their own key."""
    CONTENT_START = "contentStart"
    TEXT_OUTPUT = "textOutput"
    AUDIO_OUTPUT = "audioOutput"
    TOOL_USE = "toolUse"
    CONTENT_END = "contentEnd"
    TOOL_END = "toolEnd"
    TOOL_RESULT = "toolResult"
    STREAM_COMPLETE = "streamComplete"
    ERROR = "error"
    UNKNOWN = "unknown"
    ANY = "any"


class EventDispatcher:
    """
    Maps event names to one callback each, plus the ``any`` wildcard.

    Features:
    - Registering a type again replaces the previous handler
    - Sync or async handlers
    - A failing handler is logged and never stops dispatch to the wildcard
      or aborts the response loop
    """

    def __init__(self, session_id: str = ""):
        self._session_id = session_id
        self._handlers: Dict[str, EventHandler] = {}

    def register(self, event_type: str, handler: EventHandler) -> None:
        """Register (or replace) the handler for an event type."""
        self._handlers[event_type] = handler

    async def dispatch(self, event_type: str, data: Any) -> None:
        """Deliver an event to its handler, then to the wildcard handler."""
        handler = self._handlers.get(event_type)
        if handler is not None:
            await self._invoke(event_type, handler, data)

        if event_type != EventType.ANY:
            any_handler = self._handlers.get(EventType.ANY)
            if any_handler is not None:
                await self._invoke(EventType.ANY, any_handler, {"type": event_type, "data": data})

    async def _invoke(self, name: str, handler: EventHandler, data: Any) -> None:
        try:
            result = handler(data)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in {name} handler for session {self._session_id}: {e}")

    def clear(self) -> None:
        """Drop every handler. Called when the session leaves the registry."""
        self._handlers.clear()


def error_payload(source: str, details: Any, message: Optional[str] = None) -> Dict[str, Any]:
    """Build the payload dispatched with an ``error`` event."""
    payload: Dict[str, Any] = {"source": source, "details": details}
    if message:
        payload["message"] = message
    return payload
