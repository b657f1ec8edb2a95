"""
Tests for the WebSocket transport adapter and the HTTP server.
"""

import asyncio
import base64
import json
import pytest
from unittest.mock import AsyncMock

from fastapi import FastAPI, WebSocket

from shuttle_voice.config import AgentType
from shuttle_voice.realtime.connection import ClientMessage, VoiceConnectionHandler
from tests.fakes import chunk, event_names


class FakeWebSocket:
    """Serves queued client frames, then disconnects. Records what is sent.

    Queued ``bytes`` become binary frames; strings and dicts become text frames.
    """

    def __init__(self, incoming=None):
        self.incoming = list(incoming or [])
        self.sent = []

    async def receive(self):
        await asyncio.sleep(0)
        if not self.incoming:
            return {"type": "websocket.disconnect", "code": 1000}
        item = self.incoming.pop(0)
        if isinstance(item, bytes):
            return {"type": "websocket.receive", "bytes": item}
        text = item if isinstance(item, str) else json.dumps(item)
        return {"type": "websocket.receive", "text": text}

    async def send_text(self, text):
        self.sent.append(json.loads(text))

    def of_type(self, message_type):
        return [m["data"] for m in self.sent if m["type"] == message_type]


class TestClientMessage:
    """Tests for client message validation."""

    def test_field_lookup(self):
        message = ClientMessage.model_validate({"type": "setVoice", "data": {"voiceId": "matthew"}})
        assert message.field("voiceId") == "matthew"

    def test_field_on_non_dict_data(self):
        message = ClientMessage.model_validate({"type": "audioInput", "data": "AAAA"})
        assert message.field("voiceId") is None


class TestVoiceConnectionHandler:
    """Tests for message handling and connection lifecycle."""

    @pytest.mark.asyncio
    async def test_start_creates_session_with_defaults(self, client):
        handler = VoiceConnectionHandler(FakeWebSocket(), client, session_id="sock-1")

        session = await handler.start()
        await handler._stream_task

        state = client.get_session("sock-1")
        assert session.session_id == "sock-1"
        assert state.selected_voice_id == "tiffany"
        assert state.selected_user_id == "123"
        assert state.agent_type == AgentType.RETRIEVAL

    @pytest.mark.asyncio
    async def test_session_events_forwarded(self, client, transport):
        websocket = FakeWebSocket()
        transport.inbound = [
            chunk({"event": {"textOutput": {"content": "Your shuttle leaves at 7:15."}}}),
        ]
        handler = VoiceConnectionHandler(websocket, client)

        await handler.start()
        await handler._stream_task

        assert websocket.of_type("textOutput") == [{"content": "Your shuttle leaves at 7:15."}]
        assert len(websocket.of_type("streamComplete")) == 1

    @pytest.mark.asyncio
    async def test_full_conversation_then_disconnect(self, client):
        audio = base64.b64encode(b"\x00\x01\x02\x03").decode("ascii")
        websocket = FakeWebSocket([
            {"type": "setVoice", "data": {"voiceId": "matthew"}},
            {"type": "setUserId", "data": {"user_id": "rider-7"}},
            {"type": "setAgentType", "data": {"agentType": "BOOKING"}},
            {"type": "promptStart"},
            {"type": "systemPrompt", "data": {"content": "Help with shuttle bookings."}},
            {"type": "audioStart"},
            {"type": "audioInput", "data": audio},
        ])
        handler = VoiceConnectionHandler(websocket, client, session_id="sock-1")
        await handler.start()
        state = client.get_session("sock-1")

        await handler.run()
        await handler._stream_task

        assert state.selected_voice_id == "matthew"
        assert state.selected_user_id == "rider-7"
        assert state.agent_type == AgentType.BOOKING
        assert state.queue[1]["event"]["promptStart"]["audioOutputConfiguration"]["voiceId"] == "matthew"

        names = event_names(state.queue)
        assert names[:2] == ["sessionStart", "promptStart"]
        assert "audioInput" in names
        assert names[-3:] == ["contentEnd", "promptEnd", "sessionEnd"]
        assert names.index("audioInput") < len(names) - 3

        statuses = [s["message"] for s in websocket.of_type("status")]
        assert statuses == [
            "Voice selected: matthew",
            "User selected: rider-7",
            "Agent selected: booking",
        ]
        assert client.get_active_sessions() == []

    @pytest.mark.asyncio
    async def test_stop_audio_closes_once(self, client):
        websocket = FakeWebSocket([{"type": "promptStart"}, {"type": "stopAudio"}])
        handler = VoiceConnectionHandler(websocket, client, session_id="sock-1")
        await handler.start()
        state = client.get_session("sock-1")

        await handler.run()

        assert event_names(state.queue).count("sessionEnd") == 1
        assert websocket.of_type("status") == [{"message": "Voice session closed."}]
        assert client.get_active_sessions() == []

    @pytest.mark.asyncio
    async def test_invalid_payloads_reported(self, client):
        websocket = FakeWebSocket([
            "not json",
            {"data": "no type"},
            {"type": "danceParty"},
            {"type": "audioInput", "data": "***"},
        ])
        handler = VoiceConnectionHandler(websocket, client)
        await handler.start()

        await handler.run()

        errors = websocket.of_type("error")
        assert errors[0]["message"] == "Payload must be a JSON object with a 'type' field."
        assert errors[1]["message"] == "Payload must be a JSON object with a 'type' field."
        assert errors[2] == {"message": "Unsupported message type.", "details": "danceParty"}
        assert errors[3]["message"] == "Audio stream error."

    @pytest.mark.asyncio
    async def test_cleanup_falls_back_to_force_close(self, client):
        handler = VoiceConnectionHandler(FakeWebSocket(), client, session_id="sock-1")
        session = await handler.start()
        await handler._stream_task
        session.end_audio_content = AsyncMock(side_effect=RuntimeError("stream already gone"))

        await handler.cleanup()

        assert client.get_active_sessions() == []

    @pytest.mark.asyncio
    async def test_message_before_start_rejected(self, client):
        websocket = FakeWebSocket()
        handler = VoiceConnectionHandler(websocket, client)

        await handler.handle({"type": "promptStart"})

        assert websocket.of_type("error") == [{"message": "Failed to initialize voice session.", "details": None}]

    @pytest.mark.asyncio
    async def test_binary_frame_queued_as_audio(self, client):
        websocket = FakeWebSocket([
            {"type": "promptStart"},
            {"type": "audioStart"},
            b"\x01\x02\x03\x04",
            {"type": "setVoice", "data": {"voiceId": "matthew"}},
        ])
        handler = VoiceConnectionHandler(websocket, client, session_id="sock-1")
        await handler.start()
        state = client.get_session("sock-1")

        await handler.run()
        await handler._stream_task

        audio = [e["event"]["audioInput"]["content"] for e in state.queue if "audioInput" in e["event"]]
        assert audio == [base64.b64encode(b"\x01\x02\x03\x04").decode("ascii")]
        assert websocket.of_type("error") == []
        assert websocket.of_type("status") == [{"message": "Voice selected: matthew"}]

    @pytest.mark.asyncio
    async def test_binary_frame_before_start_rejected(self, client):
        websocket = FakeWebSocket()
        handler = VoiceConnectionHandler(websocket, client)

        await handler.handle_audio(b"\x01\x02")

        assert websocket.of_type("error") == [{"message": "Failed to initialize voice session.", "details": None}]

    def test_binary_frame_over_real_socket(self, client):
        from fastapi.testclient import TestClient

        opened = {}
        app = FastAPI()

        @app.websocket("/ws")
        async def voice(websocket: WebSocket):
            await websocket.accept()
            handler = VoiceConnectionHandler(websocket, client, session_id="sock-bin")
            await handler.start()
            opened["state"] = client.get_session("sock-bin")
            await handler.run()

        with TestClient(app) as http:
            with http.websocket_connect("/ws") as ws:
                ws.send_json({"type": "promptStart"})
                ws.send_json({"type": "audioStart"})
                ws.send_bytes(b"\x01\x02\x03\x04")
                ws.send_json({"type": "stopAudio"})
                replies = []
                while not any(r["type"] == "status" for r in replies):
                    replies.append(ws.receive_json())

        assert replies[-1] == {"type": "status", "data": {"message": "Voice session closed."}}
        assert not any(r["type"] == "error" for r in replies)

        queue = opened["state"].queue
        names = event_names(queue)
        audio = [e["event"]["audioInput"]["content"] for e in queue if "audioInput" in e["event"]]
        assert audio == [base64.b64encode(b"\x01\x02\x03\x04").decode("ascii")]
        assert names.index("audioInput") < names.index("promptEnd")
        assert names[-3:] == ["contentEnd", "promptEnd", "sessionEnd"]


class TestApiServer:
    """Tests for the HTTP endpoints."""

    def test_health(self):
        from fastapi.testclient import TestClient
        import api_server

        with TestClient(api_server.app) as http:
            response = http.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert "timestamp" in body
