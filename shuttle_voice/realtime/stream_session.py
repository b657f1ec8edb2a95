"""
Stream Session Module

Public handle for one conversation. Connection code talks to this object; it
forwards to the orchestrator that owns the session state.

Audio backpressure:
- Pending audio is held in a bounded FIFO (200 chunks by default). When full,
  the oldest chunk is dropped: stale speech has no value in a live call.
- A drain task forwards at most ``audio_batch_size`` chunks per pass and then
  reschedules itself on the next loop iteration, so one busy microphone never
  starves other connections.
- Only one drain task runs per session.
- Ending the audio content flushes whatever is still pending first, so no
  audio follows the audio contentEnd.

All mutating operations on a closed session are silent no-ops; the remote
side may already have torn the stream down.
"""

import asyncio
from collections import deque
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional

from shuttle_voice.config import SessionConfig, settings
from shuttle_voice.logger import get_logger, session_logger

from .events import EventHandler

if TYPE_CHECKING:
    from .client import BidirectionalStreamClient

logger = get_logger(__name__)


class StreamSession:
    """
    One conversation over a duplex model stream.

    Usage:
        session = client.create_stream_session("socket-1")
        session.on_event("textOutput", send_text).on_event("audioOutput", play)
        await session.setup_prompt_start()
        await session.setup_system_prompt()
        await session.setup_start_audio()
        await session.stream_audio(pcm_bytes)
        ...
        await session.end_audio_content()
        await session.end_prompt()
        await session.close()
    """

    def __init__(
        self,
        session_id: str,
        client: "BidirectionalStreamClient",
        config: Optional[SessionConfig] = None,
    ):
        self._session_id = session_id
        self._client = client
        self._config = config or settings.session
        self._log = session_logger(logger, session_id)

        self._audio_queue: Deque[bytes] = deque()
        self._max_queue_size = self._config.audio_queue_max_size
        self._batch_size = self._config.audio_batch_size
        self._is_processing_audio = False
        self._drain_task: Optional[asyncio.Task] = None
        self._is_active = True

        # Metrics
        self._dropped_chunks = 0
        self._forwarded_chunks = 0

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_active(self) -> bool:
        return self._is_active

    @property
    def pending_audio(self) -> List[bytes]:
        """Snapshot of audio chunks not yet forwarded."""
        return list(self._audio_queue)

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "pending_chunks": len(self._audio_queue),
            "dropped_chunks": self._dropped_chunks,
            "forwarded_chunks": self._forwarded_chunks,
        }

    def on_event(self, event_type: str, handler: EventHandler) -> "StreamSession":
        """Register a handler for an inbound event. Returns self for chaining."""
        self._client.register_event_handler(self._session_id, event_type, handler)
        return self

    async def setup_prompt_start(self) -> None:
        self._client.setup_prompt_start_event(self._session_id)

    async def setup_system_prompt(
        self,
        text_config: Optional[Dict[str, Any]] = None,
        content: Optional[str] = None,
    ) -> None:
        self._client.setup_system_prompt_event(self._session_id, text_config, content)

    async def setup_start_audio(self, audio_config: Optional[Dict[str, Any]] = None) -> None:
        self._client.setup_start_audio_event(self._session_id, audio_config)

    async def stream_audio(self, audio_data: bytes) -> None:
        """Queue raw audio for transmission."""
        if not self._is_active:
            self._log.debug("Session not active, dropping audio chunk")
            return
        if not self._client.is_session_active(self._session_id):
            self._log.warning("Cannot stream audio: session is not active")
            return

        if len(self._audio_queue) >= self._max_queue_size:
            self._audio_queue.popleft()
            self._dropped_chunks += 1
            self._log.warning("Audio queue full, dropping oldest chunk")

        self._audio_queue.append(audio_data)
        self._client.touch(self._session_id)
        self._schedule_audio_processing()

    def _schedule_audio_processing(self) -> None:
        if self._is_processing_audio or not self._audio_queue or not self._is_active:
            return
        self._is_processing_audio = True
        self._drain_task = asyncio.get_running_loop().create_task(self._process_audio_queue())

    def _forward_pending(self, limit: Optional[int] = None) -> None:
        """Forward up to ``limit`` queued chunks (all of them when None)."""
        processed = 0
        while self._audio_queue and self._is_active and (limit is None or processed < limit):
            chunk = self._audio_queue.popleft()
            try:
                self._client.stream_audio_chunk(self._session_id, chunk)
                self._forwarded_chunks += 1
            except Exception as e:
                # Session disappeared underneath us; nothing left to feed
                self._log.error(f"Error forwarding audio chunk: {e}")
                self._audio_queue.clear()
                break
            processed += 1

    async def _process_audio_queue(self) -> None:
        """Forward one batch of audio, then yield and reschedule if more remains."""
        try:
            self._forward_pending(self._batch_size)
        finally:
            self._is_processing_audio = False
            if self._audio_queue and self._is_active:
                asyncio.get_running_loop().call_soon(self._schedule_audio_processing)

    async def end_audio_content(self) -> None:
        """Flush pending audio, then close the audio channel."""
        if not self._is_active:
            return
        self._forward_pending()
        await self._client.send_content_end(self._session_id)

    async def end_prompt(self) -> None:
        if not self._is_active:
            return
        await self._client.send_prompt_end(self._session_id)

    async def close(self) -> None:
        """Stop accepting audio, discard what is pending, and end the session."""
        if not self._is_active:
            return

        self._is_active = False
        self._audio_queue.clear()

        await self._client.send_session_end(self._session_id)
        self._log.info("Session close completed")
