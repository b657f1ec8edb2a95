"""
Bidirectional Stream Client

Orchestrates every active voice session:
- Session registry (create / look up / remove)
- Protocol event construction and queueing
- The inbound response loop and its dispatch to session handlers
- Tool-call round trips through the ToolCallBridge
- Graceful and forced close, idle reaping and shutdown

Designed for a single event loop: sessions never touch each other's state and
only this class mutates the registry.

Usage:
    client = BidirectionalStreamClient()
    session = client.create_stream_session(socket_id)
    asyncio.create_task(client.initiate_session(socket_id))
    client.start_cleanup_task()
"""

import asyncio
import base64
import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from shuttle_voice.config import AgentType, InferenceSettings, SessionConfig, settings
from shuttle_voice.core.duplex import DuplexStream
from shuttle_voice.logger import get_logger, session_logger

from . import protocol
from .events import EventHandler, EventType, error_payload
from .prompts import system_prompt_for
from .session import SessionState, new_id
from .session_queue import create_session_iterable
from .stream_session import StreamSession
from .tool_bridge import ToolCallBridge

logger = get_logger(__name__)

_FAULT_KEYS = ("modelStreamErrorException", "internalServerException")


class SessionNotFoundError(KeyError):
    """Operation against a session id that is not registered."""


class SessionExistsError(ValueError):
    """A session with the requested id is already registered."""


class BidirectionalStreamClient:
    """
    Owner of all streaming sessions.

    Collaborators (both created lazily when not injected):
    - transport: DuplexStream to the model (Bedrock by default)
    - tool_bridge: ToolCallBridge for knowledge-base tool calls
    """

    def __init__(
        self,
        transport: Optional[DuplexStream] = None,
        tool_bridge: Optional[ToolCallBridge] = None,
        inference_config: Optional[InferenceSettings] = None,
        session_config: Optional[SessionConfig] = None,
        model_id: Optional[str] = None,
    ):
        self._transport = transport
        self._tool_bridge = tool_bridge
        self._inference_config = (inference_config or settings.inference).to_protocol()
        self._session_config = session_config or settings.session
        self._model_id = model_id or settings.aws.model_id

        self._active_sessions: Dict[str, SessionState] = {}
        self._session_last_activity: Dict[str, float] = {}
        self._cleanup_in_progress: Set[str] = set()

        self._cleanup_task: Optional[asyncio.Task] = None

    def _ensure_transport(self) -> DuplexStream:
        if self._transport is None:
            from shuttle_voice.core.bedrock_stream import BedrockBidirectionalStream
            self._transport = BedrockBidirectionalStream()
        return self._transport

    def _ensure_tool_bridge(self) -> ToolCallBridge:
        if self._tool_bridge is None:
            self._tool_bridge = ToolCallBridge()
        return self._tool_bridge

    # ========================================================================
    # Registry
    # ========================================================================

    def is_session_active(self, session_id: str) -> bool:
        state = self._active_sessions.get(session_id)
        return state is not None and state.is_active

    def get_active_sessions(self) -> List[str]:
        return list(self._active_sessions)

    def get_session(self, session_id: str) -> Optional[SessionState]:
        return self._active_sessions.get(session_id)

    def get_last_activity_time(self, session_id: str) -> float:
        return self._session_last_activity.get(session_id, 0.0)

    def is_cleanup_in_progress(self, session_id: str) -> bool:
        return session_id in self._cleanup_in_progress

    def touch(self, session_id: str) -> None:
        """Refresh the idle timer of a session."""
        if session_id in self._active_sessions:
            self._session_last_activity[session_id] = time.monotonic()

    def _require_session(self, session_id: str) -> SessionState:
        state = self._active_sessions.get(session_id)
        if state is None:
            raise SessionNotFoundError(f"Stream session {session_id} not found")
        return state

    def create_stream_session(
        self,
        session_id: Optional[str] = None,
        inference_config: Optional[InferenceSettings] = None,
        agent_type: AgentType = AgentType.RETRIEVAL,
    ) -> StreamSession:
        """
        Register a new session.

        Args:
            session_id: Registry key (generated when omitted)
            inference_config: Per-session sampling override
            agent_type: Variant selecting prompt and knowledge bases

        Raises:
            SessionExistsError: session_id is already registered
        """
        session_id = session_id or str(uuid.uuid4())
        if session_id in self._active_sessions:
            raise SessionExistsError(f"Stream session with ID {session_id} already exists")

        state = SessionState(
            session_id=session_id,
            inference_config=(
                inference_config.to_protocol() if inference_config else dict(self._inference_config)
            ),
            agent_type=agent_type,
        )
        self._active_sessions[session_id] = state
        self._session_last_activity[session_id] = time.monotonic()

        logger.info(f"Created stream session {session_id} (agentType: {agent_type.value})")
        return StreamSession(session_id, self, self._session_config)

    def register_event_handler(self, session_id: str, event_type: str, handler: EventHandler) -> None:
        self._require_session(session_id).handlers.register(event_type, handler)

    def set_session_user_id(self, session_id: str, user_id: str) -> None:
        state = self._active_sessions.get(session_id)
        if state is not None:
            state.selected_user_id = user_id

    def set_session_voice_id(self, session_id: str, voice_id: str) -> None:
        state = self._active_sessions.get(session_id)
        if state is not None:
            state.selected_voice_id = voice_id

    def set_session_agent_type(self, session_id: str, agent_type: AgentType) -> None:
        state = self._active_sessions.get(session_id)
        if state is not None:
            state.agent_type = agent_type

    async def _dispatch(self, session_id: str, event_type: str, data: Any) -> None:
        state = self._active_sessions.get(session_id)
        if state is None:
            return
        await state.handlers.dispatch(event_type, data)

    # ========================================================================
    # Stream lifecycle
    # ========================================================================

    async def initiate_session(self, session_id: str) -> None:
        """
        Queue sessionStart, open the duplex stream and process responses until
        the stream ends. Any exception escaping the loop is dispatched as an
        ``error`` and the session is force closed.

        Raises:
            SessionNotFoundError: session_id is not registered
        """
        state = self._require_session(session_id)
        log = session_logger(logger, session_id)

        try:
            self.setup_session_start_event(session_id)
            body = create_session_iterable(state, lambda: session_id in self._active_sessions)

            log.info("Starting bidirectional stream")
            response = self._ensure_transport().invoke(self._model_id, body)
            await self._process_response_stream(session_id, response)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Error in session: {e}")
            await self._dispatch(
                session_id,
                EventType.ERROR,
                error_payload("bidirectionalStream", str(e)),
            )
            if state.is_active:
                self.force_close_session(session_id)

    async def _process_response_stream(
        self,
        session_id: str,
        response: AsyncIterator[Dict[str, Any]],
    ) -> None:
        state = self._active_sessions.get(session_id)
        if state is None:
            return
        log = session_logger(logger, session_id)

        async for event in response:
            if not state.is_active:
                log.info("Session is no longer active, stopping response processing")
                break

            raw = (event.get("chunk") or {}).get("bytes")
            if raw:
                self.touch(session_id)
                await self._handle_response_chunk(session_id, state, raw)
                continue

            for fault in _FAULT_KEYS:
                if fault in event:
                    log.error(f"{fault}: {event[fault]}")
                    await self._dispatch(
                        session_id,
                        EventType.ERROR,
                        {"type": fault, "details": event[fault]},
                    )
                    break

        log.info("Response stream processing complete")
        await self._dispatch(
            session_id,
            EventType.STREAM_COMPLETE,
            {"timestamp": datetime.now(timezone.utc).isoformat()},
        )

    async def _handle_response_chunk(self, session_id: str, state: SessionState, raw: Any) -> None:
        """Decode one inbound envelope and route it by its event key."""
        log = session_logger(logger, session_id)
        try:
            text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
            message = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError):
            log.warning(f"Discarding unparseable response chunk: {raw[:200]!r}")
            return

        if not isinstance(message, dict):
            log.warning(f"Discarding non-object response chunk: {message!r}")
            return

        body = message.get("event")
        if not isinstance(body, dict):
            body = {}

        if EventType.CONTENT_START in body:
            await self._dispatch(session_id, EventType.CONTENT_START, body[EventType.CONTENT_START])
        elif EventType.TEXT_OUTPUT in body:
            await self._dispatch(session_id, EventType.TEXT_OUTPUT, body[EventType.TEXT_OUTPUT])
        elif EventType.AUDIO_OUTPUT in body:
            await self._dispatch(session_id, EventType.AUDIO_OUTPUT, body[EventType.AUDIO_OUTPUT])
        elif EventType.TOOL_USE in body:
            tool_use = body[EventType.TOOL_USE]
            await self._dispatch(session_id, EventType.TOOL_USE, tool_use)
            state.remember_tool_use(tool_use)
        elif EventType.CONTENT_END in body:
            content_end = body[EventType.CONTENT_END]
            if isinstance(content_end, dict) and content_end.get("type") == "TOOL":
                await self._handle_tool_end(session_id, state)
            else:
                await self._dispatch(session_id, EventType.CONTENT_END, content_end)
        elif body:
            event_key = next(iter(body))
            log.debug(f"Dispatching unrecognized event {event_key}")
            await self._dispatch(session_id, event_key, body)
        elif message:
            await self._dispatch(session_id, EventType.UNKNOWN, message)

    async def _handle_tool_end(self, session_id: str, state: SessionState) -> None:
        """Resolve the cached tool call and answer it on the same stream."""
        tool_use_id = state.tool_use_id
        tool_name = state.tool_name
        tool_use_content = state.tool_use_content

        session_logger(logger, session_id).info(f"Processing tool use {tool_name} ({tool_use_id})")
        await self._dispatch(session_id, EventType.TOOL_END, {
            "toolUseContent": tool_use_content,
            "toolUseId": tool_use_id,
            "toolName": tool_name,
        })

        result = await self._ensure_tool_bridge().resolve(tool_name, tool_use_content, state.agent_type)

        self.send_tool_result(session_id, tool_use_id, result)
        await self._dispatch(session_id, EventType.TOOL_RESULT, {
            "toolUseId": tool_use_id,
            "result": result,
        })

    # ========================================================================
    # Outbound events
    # ========================================================================

    def _push(self, session_id: str, event: Dict[str, Any]) -> bool:
        state = self._active_sessions.get(session_id)
        if state is None or not state.is_active:
            return False
        self.touch(session_id)
        return state.push(event)

    def setup_session_start_event(self, session_id: str) -> None:
        state = self._active_sessions.get(session_id)
        if state is None:
            return
        self._push(session_id, protocol.session_start(state.inference_config))

    def setup_prompt_start_event(self, session_id: str) -> None:
        state = self._active_sessions.get(session_id)
        if state is None:
            return
        self._push(session_id, protocol.prompt_start(
            state.prompt_name,
            state.selected_voice_id or settings.voice.default_voice_id,
        ))
        state.is_prompt_start_sent = True

    def setup_system_prompt_event(
        self,
        session_id: str,
        text_config: Optional[Dict[str, Any]] = None,
        content: Optional[str] = None,
    ) -> None:
        """Queue contentStart(TEXT, SYSTEM) -> textInput -> contentEnd."""
        state = self._active_sessions.get(session_id)
        if state is None:
            return
        content_name = new_id()
        prompt_text = content if content is not None else system_prompt_for(state.agent_type)

        self._push(session_id, protocol.text_content_start(
            state.prompt_name, content_name, role="SYSTEM", text_config=text_config,
        ))
        self._push(session_id, protocol.text_input(state.prompt_name, content_name, prompt_text))
        self._push(session_id, protocol.content_end(state.prompt_name, content_name))

    def setup_start_audio_event(
        self,
        session_id: str,
        audio_config: Optional[Dict[str, Any]] = None,
    ) -> None:
        state = self._active_sessions.get(session_id)
        if state is None:
            return
        self._push(session_id, protocol.audio_content_start(
            state.prompt_name, state.audio_content_id, audio_config,
        ))
        state.is_audio_content_start_sent = True

    def stream_audio_chunk(self, session_id: str, audio_data: bytes) -> None:
        """
        Queue one audioInput event.

        Raises:
            SessionNotFoundError: the session is missing or inactive
        """
        state = self._active_sessions.get(session_id)
        if state is None or not state.is_active:
            raise SessionNotFoundError(f"Invalid session {session_id} for audio streaming")

        encoded = base64.b64encode(audio_data).decode("ascii")
        self._push(session_id, protocol.audio_input(state.prompt_name, state.audio_content_id, encoded))

    def send_tool_result(self, session_id: str, tool_use_id: str, result: Any) -> None:
        """Queue contentStart(TOOL) -> toolResult -> contentEnd, correlated to tool_use_id."""
        state = self._active_sessions.get(session_id)
        if state is None or not state.is_active:
            return

        content_name = new_id()
        content = result if isinstance(result, str) else json.dumps(result)

        self._push(session_id, protocol.tool_content_start(state.prompt_name, content_name, tool_use_id))
        self._push(session_id, protocol.tool_result(state.prompt_name, content_name, content))
        self._push(session_id, protocol.content_end(state.prompt_name, content_name))
        session_logger(logger, session_id).info(f"Tool result sent for {tool_use_id}")

    async def send_content_end(self, session_id: str) -> None:
        state = self._active_sessions.get(session_id)
        if state is None or not state.is_audio_content_start_sent:
            return
        self._push(session_id, protocol.content_end(state.prompt_name, state.audio_content_id))
        await asyncio.sleep(self._session_config.content_end_delay_s)

    async def send_prompt_end(self, session_id: str) -> None:
        state = self._active_sessions.get(session_id)
        if state is None or not state.is_prompt_start_sent:
            return
        self._push(session_id, protocol.prompt_end(state.prompt_name))
        await asyncio.sleep(self._session_config.prompt_end_delay_s)

    async def send_session_end(self, session_id: str) -> None:
        """Queue sessionEnd, give it time to go out, then remove the session."""
        state = self._active_sessions.get(session_id)
        if state is None:
            return
        self._push(session_id, protocol.session_end())
        await asyncio.sleep(self._session_config.session_end_delay_s)

        state.deactivate()
        self._remove(session_id)
        logger.info(f"Session {session_id} closed and removed from active sessions")

    def _remove(self, session_id: str) -> None:
        state = self._active_sessions.pop(session_id, None)
        self._session_last_activity.pop(session_id, None)
        if state is not None:
            state.handlers.clear()

    # ========================================================================
    # Shutdown paths
    # ========================================================================

    async def close_session(self, session_id: str) -> None:
        """Graceful close: audio contentEnd, promptEnd, sessionEnd, each followed by a short wait."""
        if session_id in self._cleanup_in_progress:
            logger.info(f"Cleanup already in progress for session {session_id}, skipping")
            return

        self._cleanup_in_progress.add(session_id)
        try:
            logger.info(f"Starting close process for session {session_id}")
            await self.send_content_end(session_id)
            await self.send_prompt_end(session_id)
            await self.send_session_end(session_id)
        except Exception as e:
            logger.error(f"Error during closing sequence for session {session_id}: {e}")
            state = self._active_sessions.get(session_id)
            if state is not None:
                state.deactivate()
                self._remove(session_id)
        finally:
            self._cleanup_in_progress.discard(session_id)

    def force_close_session(self, session_id: str) -> None:
        """Immediately deactivate and remove a session. Queued events are discarded."""
        if session_id in self._cleanup_in_progress or session_id not in self._active_sessions:
            logger.debug(f"Session {session_id} already being cleaned up or not active")
            return

        self._cleanup_in_progress.add(session_id)
        try:
            self._active_sessions[session_id].deactivate()
            self._remove(session_id)
            logger.info(f"Session {session_id} force closed")
        finally:
            self._cleanup_in_progress.discard(session_id)

    def reap_idle_sessions(self, now: Optional[float] = None) -> List[str]:
        """Force close every session idle longer than the configured timeout."""
        now = now if now is not None else time.monotonic()
        reaped = []
        for session_id in self.get_active_sessions():
            idle_for = now - self.get_last_activity_time(session_id)
            if idle_for > self._session_config.idle_timeout_s:
                logger.warning(f"Closing inactive session {session_id} (idle {idle_for:.0f}s)")
                self.force_close_session(session_id)
                reaped.append(session_id)
        return reaped

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._session_config.cleanup_interval_s)
            logger.debug("Session cleanup check")
            try:
                self.reap_idle_sessions()
            except Exception as e:
                logger.error(f"Session cleanup error: {e}")

    def start_cleanup_task(self) -> None:
        """Start the periodic idle sweep on the running loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    async def stop_cleanup_task(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Gracefully close every session; force close whatever misses the deadline."""
        timeout = timeout if timeout is not None else self._session_config.shutdown_timeout_s
        await self.stop_cleanup_task()

        session_ids = self.get_active_sessions()
        logger.info(f"Closing {len(session_ids)} sessions")
        if not session_ids:
            return

        closes = [asyncio.ensure_future(self.close_session(sid)) for sid in session_ids]
        _, pending = await asyncio.wait(closes, timeout=timeout)
        if pending:
            logger.error(f"Force shutdown: {len(pending)} session(s) did not close in {timeout}s")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for session_id in self.get_active_sessions():
            self.force_close_session(session_id)
