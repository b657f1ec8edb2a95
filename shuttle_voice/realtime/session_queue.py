"""
Session Queue Adapter

Turns a session's push-based outbound queue into the pull-based async iterable
that the duplex stream consumes as its request body.

Guarantees:
- One consumer per session (the stream transmission)
- Strict FIFO, each event delivered once
- The close signal always wins: once it fires, iteration ends even if events
  are still queued
"""

import asyncio
import json
from typing import Any, Callable, Dict

from shuttle_voice.logger import get_logger, session_logger

from .session import SessionState

logger = get_logger(__name__)


def encode_chunk(event: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize one outbound event as a stream chunk (UTF-8 JSON bytes)."""
    return {"chunk": {"bytes": json.dumps(event).encode("utf-8")}}


class SessionEventIterator:
    """
    Async iterator over a session's outbound events.

    ``__anext__`` blocks while the queue is empty until either an event is
    pushed or the session closes. Closing (or an unexpected error) ends the
    iteration instead of raising into the stream.
    """

    def __init__(self, state: SessionState, is_registered: Callable[[], bool]):
        self._state = state
        self._is_registered = is_registered
        self._log = session_logger(logger, state.session_id)

    def __aiter__(self) -> "SessionEventIterator":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        state = self._state
        try:
            if not state.is_active or not self._is_registered():
                self._log.debug("Iterator closing, session inactive")
                raise StopAsyncIteration

            if not state.queue:
                closed = await self._wait_for_event()
                if closed:
                    self._log.debug("Closed while waiting for events")
                    raise StopAsyncIteration

            if not state.queue or not state.is_active:
                self._log.debug("Queue empty or session inactive")
                raise StopAsyncIteration

            event = state.queue.popleft()
            if not state.queue:
                state.queue_signal.clear()
            return encode_chunk(event)

        except (StopAsyncIteration, asyncio.CancelledError):
            raise
        except Exception as e:
            self._log.error(f"Iterator error: {e}")
            state.is_active = False
            raise StopAsyncIteration

    async def _wait_for_event(self) -> bool:
        """Race queue readiness against close. Returns True if the session closed."""
        state = self._state
        state.queue_signal.clear()

        ready = asyncio.ensure_future(state.queue_signal.wait())
        closed = asyncio.ensure_future(state.close_signal.wait())
        try:
            await asyncio.wait({ready, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (ready, closed):
                if not waiter.done():
                    waiter.cancel()

        return state.close_signal.is_set()

    async def aclose(self) -> None:
        """Early termination by the consumer."""
        self._log.debug("Iterator aclose() called")
        self._state.is_active = False

    async def athrow(self, *exc_info: Any) -> Dict[str, Any]:
        """Consumer aborted with an error: deactivate and stop without re-raising it."""
        self._log.debug(f"Iterator athrow() called with {exc_info[:1]}")
        self._state.is_active = False
        raise StopAsyncIteration


class _ExhaustedIterator:
    """Iterator handed out for sessions that are already inactive."""

    def __aiter__(self) -> "_ExhaustedIterator":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        raise StopAsyncIteration


def create_session_iterable(state: SessionState, is_registered: Callable[[], bool]):
    """Build the request body for a session's duplex stream."""
    if not state.is_active:
        logger.info(f"Cannot create async iterable: session {state.session_id} not active")
        return _ExhaustedIterator()
    return SessionEventIterator(state, is_registered)
