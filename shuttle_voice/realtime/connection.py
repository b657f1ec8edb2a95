"""
WebSocket Transport Adapter

Bridges one browser WebSocket to one streaming session:
- Client messages ``{"type": ..., "data": ...}`` become session operations
- Session events are forwarded to the browser as ``{"type": <event>, "data": ...}``
- On disconnect the session is ended gracefully (audio end, prompt end,
  close), falling back to a forced close

Client message types:
    audioInput    base64 LPCM chunk (binary frames are raw LPCM audio)
    promptStart   optional {"voiceId"}
    systemPrompt  optional {"content"}
    audioStart    start the user audio channel
    stopAudio     end audio, end prompt and close
    setVoice      {"voiceId"}
    setUserId     {"user_id"}
    setAgentType  {"agentType"}
"""

import asyncio
import base64
import binascii
import json
from typing import Any, Optional

from fastapi import WebSocket
from pydantic import BaseModel, ValidationError

from shuttle_voice.config import AgentType, settings
from shuttle_voice.logger import get_logger, session_logger
from shuttle_voice.messages import msg

from .client import BidirectionalStreamClient
from .events import EventType
from .stream_session import StreamSession

logger = get_logger(__name__)

# Session events mirrored to the browser
FORWARDED_EVENTS = (
    EventType.CONTENT_START,
    EventType.TEXT_OUTPUT,
    EventType.AUDIO_OUTPUT,
    EventType.TOOL_USE,
    EventType.TOOL_RESULT,
    EventType.CONTENT_END,
    EventType.STREAM_COMPLETE,
    EventType.ERROR,
)


class ClientMessage(BaseModel):
    """One message received from the browser."""
    type: str
    data: Any = None

    def field(self, name: str) -> Any:
        return self.data.get(name) if isinstance(self.data, dict) else None


class VoiceConnectionHandler:
    """
    Owns the streaming session behind one WebSocket connection.

    Usage:
        handler = VoiceConnectionHandler(websocket, client)
        await handler.start()
        await handler.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        client: BidirectionalStreamClient,
        session_id: Optional[str] = None,
        agent_type: AgentType = AgentType.RETRIEVAL,
    ):
        self.websocket = websocket
        self.client = client
        self.agent_type = agent_type
        self._requested_id = session_id

        self.session: Optional[StreamSession] = None
        self._stream_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def session_id(self) -> Optional[str]:
        return self.session.session_id if self.session else None

    async def start(self) -> StreamSession:
        """Create the session, wire event forwarding and open the model stream."""
        session = self.client.create_stream_session(self._requested_id, agent_type=self.agent_type)
        self.session = session

        self.client.set_session_voice_id(session.session_id, settings.voice.default_voice_id)
        self.client.set_session_user_id(session.session_id, settings.voice.default_user_id)

        for event_type in FORWARDED_EVENTS:
            session.on_event(event_type, self._forwarder(event_type))

        self._stream_task = asyncio.create_task(self.client.initiate_session(session.session_id))
        session_logger(logger, session.session_id).info("Voice connection established")
        return session

    def _forwarder(self, event_type: str):
        async def forward(data: Any) -> None:
            await self.send(event_type, data)
        return forward

    async def send(self, message_type: str, data: Any) -> None:
        await self.websocket.send_text(json.dumps({"type": message_type, "data": data}))

    async def send_error(self, message: str, details: Any = None) -> None:
        await self.send("error", {"message": message, "details": details})

    async def run(self) -> None:
        """Receive messages until the browser disconnects, then clean up."""
        try:
            while True:
                frame = await self.websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    break

                if frame.get("bytes") is not None:
                    await self.handle_audio(frame["bytes"])
                    continue

                raw = frame.get("text")
                if raw is None:
                    continue
                try:
                    payload = json.loads(raw)
                except json.JSONDecodeError:
                    await self.send_error(msg("error.invalid_payload"))
                    continue
                await self.handle(payload)
        finally:
            await self.cleanup()

    async def handle_audio(self, audio: bytes) -> None:
        """Queue one binary frame of raw audio."""
        if self.session is None:
            await self.send_error(msg("error.session_init_failed"))
            return
        await self.session.stream_audio(audio)

    async def handle(self, payload: Any) -> None:
        """Apply one client message to the session."""
        try:
            message = ClientMessage.model_validate(payload)
        except ValidationError:
            await self.send_error(msg("error.invalid_payload"))
            return

        session = self.session
        if session is None:
            await self.send_error(msg("error.session_init_failed"))
            return
        session_id = session.session_id

        try:
            if message.type == "audioInput":
                if not isinstance(message.data, str):
                    raise ValueError("audioInput data must be a base64 string")
                await session.stream_audio(base64.b64decode(message.data, validate=True))

            elif message.type == "promptStart":
                voice_id = message.field("voiceId")
                if voice_id:
                    self.client.set_session_voice_id(session_id, voice_id)
                await session.setup_prompt_start()

            elif message.type == "systemPrompt":
                content = message.data if isinstance(message.data, str) else message.field("content")
                await session.setup_system_prompt(content=content)

            elif message.type == "audioStart":
                await session.setup_start_audio()

            elif message.type == "stopAudio":
                await self.cleanup()
                await self.send("status", {"message": msg("status.session_closed")})

            elif message.type == "setVoice":
                voice_id = message.field("voiceId") or settings.voice.default_voice_id
                self.client.set_session_voice_id(session_id, voice_id)
                await self.send("status", {"message": msg("status.voice_selected", voice_id=voice_id)})

            elif message.type == "setUserId":
                user_id = message.field("user_id") or settings.voice.default_user_id
                self.client.set_session_user_id(session_id, user_id)
                await self.send("status", {"message": msg("status.user_selected", user_id=user_id)})

            elif message.type == "setAgentType":
                agent_type = AgentType.parse(message.field("agentType"), default=self.agent_type)
                self.agent_type = agent_type
                self.client.set_session_agent_type(session_id, agent_type)
                await self.send("status", {"message": msg("status.agent_selected", agent_type=agent_type.value)})

            else:
                await self.send_error(msg("error.unsupported_message"), message.type)

        except (binascii.Error, ValueError) as e:
            session_logger(logger, session_id).warning(f"Rejected {message.type} message: {e}")
            await self.send_error(msg("error.audio_stream"), str(e))

    async def cleanup(self) -> None:
        """End audio, end prompt and close; force close if any step fails. Idempotent."""
        if self._closed or self.session is None:
            return
        self._closed = True

        session_id = self.session.session_id
        log = session_logger(logger, session_id)
        try:
            await self.session.end_audio_content()
            await self.session.end_prompt()
            await self.session.close()
            log.info("Voice connection cleaned up")
        except Exception as e:
            log.error(f"Error during connection cleanup: {e}")
            self.client.force_close_session(session_id)
