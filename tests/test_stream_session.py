"""
Tests for the stream session handle and its audio backpressure.
"""

import asyncio
import base64
import pytest

from tests.fakes import event_names


async def drain_loop(rounds: int = 20):
    """Give scheduled drain passes a chance to run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestAudioBackpressure:
    """Tests for the bounded audio queue."""

    @pytest.mark.asyncio
    async def test_queue_keeps_most_recent_chunks(self, client):
        """Pushing 201 chunks without draining keeps the last 200."""
        session = client.create_stream_session("s1")

        for i in range(201):
            await session.stream_audio(i.to_bytes(2, "big"))

        pending = session.pending_audio
        assert len(pending) == 200
        assert pending[0] == (1).to_bytes(2, "big")
        assert pending[-1] == (200).to_bytes(2, "big")
        assert session.stats["dropped_chunks"] == 1

    @pytest.mark.asyncio
    async def test_audio_forwarded_in_order(self, client):
        """Drained chunks become base64 audioInput events in push order."""
        session = client.create_stream_session("s1")
        state = client.get_session("s1")

        chunks = [bytes([i]) * 4 for i in range(12)]
        for c in chunks:
            await session.stream_audio(c)
        await drain_loop()

        audio_events = [e["event"]["audioInput"] for e in state.queue if "audioInput" in e["event"]]
        assert [base64.b64decode(e["content"]) for e in audio_events] == chunks
        assert all(e["contentName"] == state.audio_content_id for e in audio_events)
        assert all(e["promptName"] == state.prompt_name for e in audio_events)
        assert session.stats["forwarded_chunks"] == 12
        assert session.pending_audio == []

    @pytest.mark.asyncio
    async def test_drain_forwards_one_batch_per_pass(self, client):
        """A single pass forwards at most audio_batch_size chunks."""
        session = client.create_stream_session("s1")
        state = client.get_session("s1")

        for i in range(12):
            await session.stream_audio(bytes([i]))

        # Let exactly one drain task run
        await asyncio.sleep(0)
        assert len(state.queue) == 5
        assert len(session.pending_audio) == 7

        await drain_loop()
        assert len(state.queue) == 12

    @pytest.mark.asyncio
    async def test_drain_task_is_held(self, client):
        session = client.create_stream_session("s1")

        await session.stream_audio(b"\x00\x01")
        task = session._drain_task

        assert task is not None
        await task
        assert session.stats["forwarded_chunks"] == 1

    @pytest.mark.asyncio
    async def test_end_audio_flushes_pending_first(self, client):
        """No audioInput is queued after the audio contentEnd."""
        session = client.create_stream_session("s1")
        state = client.get_session("s1")
        await session.setup_prompt_start()
        await session.setup_start_audio()

        chunks = [bytes([i]) * 2 for i in range(12)]
        for c in chunks:
            await session.stream_audio(c)
        await session.end_audio_content()
        await drain_loop()

        names = event_names(state.queue)
        audio_end = len(names) - 1 - names[::-1].index("contentEnd")
        audio_positions = [i for i, name in enumerate(names) if name == "audioInput"]
        assert len(audio_positions) == 12
        assert max(audio_positions) < audio_end
        assert names[audio_end:] == ["contentEnd"]
        assert session.pending_audio == []

    @pytest.mark.asyncio
    async def test_stream_audio_refreshes_activity(self, client):
        session = client.create_stream_session("s1")
        client._session_last_activity["s1"] = 0.0

        await session.stream_audio(b"\x00\x01")

        assert client.get_last_activity_time("s1") > 0.0

    @pytest.mark.asyncio
    async def test_audio_ignored_for_removed_session(self, client):
        """Audio for a session no longer in the registry is dropped."""
        session = client.create_stream_session("s1")
        client.force_close_session("s1")

        await session.stream_audio(b"\x00\x01")

        assert session.pending_audio == []


class TestStreamSessionLifecycle:
    """Tests for setup and teardown through the handle."""

    @pytest.mark.asyncio
    async def test_setup_sequence(self, client):
        session = client.create_stream_session("s1")
        state = client.get_session("s1")

        await session.setup_prompt_start()
        await session.setup_system_prompt(content="You are a test assistant.")
        await session.setup_start_audio()

        assert event_names(state.queue) == [
            "promptStart", "contentStart", "textInput", "contentEnd", "contentStart",
        ]
        assert state.queue[2]["event"]["textInput"]["content"] == "You are a test assistant."
        assert state.is_prompt_start_sent
        assert state.is_audio_content_start_sent

    @pytest.mark.asyncio
    async def test_on_event_chains(self, client):
        session = client.create_stream_session("s1")
        assert session.on_event("textOutput", print).on_event("audioOutput", print) is session

    @pytest.mark.asyncio
    async def test_close_ends_session(self, client):
        session = client.create_stream_session("s1")
        state = client.get_session("s1")
        await session.stream_audio(b"\x00")

        await session.close()

        assert not session.is_active
        assert session.pending_audio == []
        assert not client.is_session_active("s1")
        assert "s1" not in client.get_active_sessions()
        assert event_names(state.queue)[-1] == "sessionEnd"

    @pytest.mark.asyncio
    async def test_operations_after_close_are_noops(self, client):
        """Every mutating call on a closed handle is silent."""
        session = client.create_stream_session("s1")
        await session.close()

        await session.stream_audio(b"\x00")
        await session.end_audio_content()
        await session.end_prompt()
        await session.close()

        assert session.pending_audio == []

    @pytest.mark.asyncio
    async def test_setup_after_removal_is_noop(self, client):
        """Setup calls on a reaped session do not raise."""
        session = client.create_stream_session("s1")
        client.force_close_session("s1")

        await session.setup_prompt_start()
        await session.setup_system_prompt()
        await session.setup_start_audio()
        await session.end_audio_content()
        await session.end_prompt()
        await session.close()
