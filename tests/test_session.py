"""Tests for the session state machine."""

import asyncio
import base64
import json
from typing import Any, Dict

import pytest

from evi_bridge.bridge import SessionState
from evi_bridge.tools import ToolDefinition, ToolRegistry
from tests.fakes import FakeClientSocket, build_wav, eventually


def _audio(pcm: bytes) -> Dict[str, str]:
    return {"type": "audio", "audio": base64.b64encode(pcm).decode()}


def _init(uuid: str = "call-1") -> Dict[str, str]:
    return {"type": "init", "uuid": uuid}


class TestSessionLifecycle:
    """Test state transitions."""

    @pytest.mark.asyncio
    async def test_init_connects(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test init dials the upstream and reaches READY."""
        recorder = make_recorder()
        session, _ = run_session(recorder)
        assert session.state is SessionState.INIT

        client_socket.feed(_init("abc"))
        await eventually(lambda: session.state is SessionState.READY)

        assert session.session_id == "abc"
        assert recorder.client.session_config.session_id == "abc"

    @pytest.mark.asyncio
    async def test_repeated_init_ignored(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test a second init neither rebinds nor redials."""
        recorder = make_recorder()
        session, _ = run_session(recorder)

        client_socket.feed(_init("first"))
        client_socket.feed(_init("second"))
        await eventually(lambda: session.state is SessionState.READY)
        client_socket.feed(_audio(b"\x00\x00"))
        await eventually(lambda: len(recorder.client.audio_inputs) == 1)

        assert session.session_id == "first"
        assert len(recorder.clients) == 1
        assert recorder.client.connect_calls == 1

    @pytest.mark.asyncio
    async def test_malformed_messages_dropped(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test bad frames are skipped and the session carries on."""
        recorder = make_recorder()
        session, _ = run_session(recorder)

        client_socket.feed("not json")
        client_socket.feed({"type": "dtmf", "digit": "1"})
        client_socket.feed({"type": "init"})
        client_socket.feed(_init())

        await eventually(lambda: session.state is SessionState.READY)
        assert client_socket.of_type("error") == []

    @pytest.mark.asyncio
    async def test_audio_before_init_buffered(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test audio sent before init is delivered once ready."""
        recorder = make_recorder()
        session, _ = run_session(recorder)

        client_socket.feed(_audio(b"\x01\x00"))
        await eventually(lambda: session.pending_frames == 1)

        client_socket.feed(_init())
        await eventually(lambda: recorder.client.audio_bytes == b"\x01\x00")
        assert session.pending_frames == 0

    @pytest.mark.asyncio
    async def test_audio_before_init_capped(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test a client that never inits cannot grow the buffer past two seconds."""
        recorder = make_recorder()
        session, _ = run_session(recorder)

        # 150 frames of 20ms at 8kHz, 3s in total
        frames = [bytes([i % 256, 0]) * 160 for i in range(150)]
        for frame in frames:
            client_socket.feed(_audio(frame))
        client_socket.feed(_init())

        expected = b"".join(frames[50:])
        await eventually(lambda: bool(recorder.clients) and recorder.client.audio_bytes == expected)
        assert session.pending_frames == 0

    @pytest.mark.asyncio
    async def test_empty_audio_skipped(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test audio messages without payload are ignored."""
        recorder = make_recorder()
        session, _ = run_session(recorder)

        client_socket.feed(_init())
        await eventually(lambda: session.state is SessionState.READY)
        client_socket.feed({"type": "audio"})
        client_socket.feed({"type": "audio", "audio": ""})
        client_socket.feed(_audio(b"\x02\x00"))

        await eventually(lambda: len(recorder.client.audio_inputs) == 1)
        assert recorder.client.audio_bytes == b"\x02\x00"


class TestAudioOrdering:
    """Test ordering across the pending queue."""

    @pytest.mark.asyncio
    async def test_order_preserved_across_ready(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test buffered frames are sent before frames arriving after READY."""
        recorder = make_recorder(hold_connect=True)
        session, _ = run_session(recorder)

        frames = [bytes([i, 0]) * 80 for i in range(1, 6)]

        client_socket.feed(_init())
        for frame in frames[:3]:
            client_socket.feed(_audio(frame))
        await eventually(lambda: session.pending_frames == 3)
        assert session.state is SessionState.CONNECTING

        recorder.client.release_connect()
        for frame in frames[3:]:
            client_socket.feed(_audio(frame))

        expected = b"".join(frames)
        await eventually(lambda: recorder.client.audio_bytes == expected)
        assert session.state is SessionState.READY
        assert session.pending_frames == 0


class TestUpstreamRelay:
    """Test upstream messages reaching the client."""

    @pytest.mark.asyncio
    async def test_messages_relayed(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test audio, transcripts and interruptions reach the client in order."""
        recorder = make_recorder()
        session, _ = run_session(recorder)
        client_socket.feed(_init())
        await eventually(lambda: session.state is SessionState.READY)

        pcm = b"\x07\x00" * 160
        client = recorder.client
        client.push({"type": "user_message", "message": {"content": "Hi"}})
        client.push({"type": "audio_output", "data": base64.b64encode(build_wav(pcm, sample_rate=8000)).decode()})
        client.push({"type": "user_interruption"})

        await eventually(lambda: len(client_socket.sent) == 3)
        types = [m["type"] for m in client_socket.messages]
        assert types == ["transcript", "audio", "interruption"]
        assert base64.b64decode(client_socket.messages[1]["audio"]) == pcm

    @pytest.mark.asyncio
    async def test_upstream_error_not_fatal(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test an error message is relayed without closing the session."""
        recorder = make_recorder()
        session, _ = run_session(recorder)
        client_socket.feed(_init())
        await eventually(lambda: session.state is SessionState.READY)

        recorder.client.push({"type": "error", "message": "rate limited"})

        await eventually(lambda: len(client_socket.of_type("error")) == 1)
        assert session.state is SessionState.READY


class TestToolCalls:
    """Test tool invocation through a running session."""

    @pytest.mark.asyncio
    async def test_responses_correlated(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test B finishing before A yields two responses with matching ids."""
        gate = asyncio.Event()

        async def slow(session_id: str, args: Dict[str, Any]) -> str:
            await gate.wait()
            return "slow done"

        async def fast(session_id: str, args: Dict[str, Any]) -> str:
            return "fast done"

        registry = ToolRegistry([
            ToolDefinition("slow", "", {"type": "object"}, slow),
            ToolDefinition("fast", "", {"type": "object"}, fast),
        ])
        recorder = make_recorder(registry)
        session, _ = run_session(recorder)
        client_socket.feed(_init())
        await eventually(lambda: session.state is SessionState.READY)

        client = recorder.client
        client.push({"type": "tool_call", "name": "slow", "tool_call_id": "A", "parameters": "{}"})
        client.push({"type": "tool_call", "name": "fast", "tool_call_id": "B", "parameters": "{}"})

        await eventually(lambda: client.tool_responses == [("B", "fast done")])
        gate.set()
        await eventually(lambda: len(client.tool_responses) == 2)

        assert dict(client.tool_responses) == {"A": "slow done", "B": "fast done"}
        assert session.state is SessionState.READY

    @pytest.mark.asyncio
    async def test_unknown_tool(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test an unknown tool gets an error response and the session stays open."""
        recorder = make_recorder()
        session, _ = run_session(recorder)
        client_socket.feed(_init())
        await eventually(lambda: session.state is SessionState.READY)

        recorder.client.push({"type": "tool_call", "name": "nope", "tool_call_id": "X", "parameters": "{}"})

        await eventually(lambda: len(recorder.client.tool_responses) == 1)
        call_id, content = recorder.client.tool_responses[0]
        assert call_id == "X"
        assert json.loads(content) == {"error": "tool nope not found"}
        assert session.state is SessionState.READY
        assert client_socket.of_type("error") == []


class TestTeardown:
    """Test both peers are closed together."""

    @pytest.mark.asyncio
    async def test_client_disconnect_closes_upstream(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test client hang-up closes the upstream."""
        recorder = make_recorder()
        session, task = run_session(recorder)
        client_socket.feed(_init())
        await eventually(lambda: session.state is SessionState.READY)

        client_socket.disconnect()

        await asyncio.wait_for(task, 2)
        assert session.state is SessionState.CLOSED
        assert recorder.client.closed
        assert recorder.bridges[0].is_closed

    @pytest.mark.asyncio
    async def test_upstream_close_closes_client(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test upstream closure reports an error and closes the client."""
        recorder = make_recorder()
        session, task = run_session(recorder)
        client_socket.feed(_init())
        await eventually(lambda: session.state is SessionState.READY)

        recorder.client.end_stream()

        await asyncio.wait_for(task, 2)
        assert client_socket.closed
        errors = client_socket.of_type("error")
        assert len(errors) == 1
        assert errors[0]["message"].startswith("Provider connection closed")

    @pytest.mark.asyncio
    async def test_dial_failure(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test a failed dial reports an error and closes the client."""
        recorder = make_recorder(fail_connect=ConnectionError("handshake refused"))
        session, task = run_session(recorder)

        client_socket.feed(_init())
        client_socket.feed(_audio(b"\x00\x00"))

        await asyncio.wait_for(task, 2)
        assert session.state is SessionState.CLOSED
        assert client_socket.closed
        errors = client_socket.of_type("error")
        assert len(errors) == 1
        assert "handshake refused" in errors[0]["message"]
        assert session.pending_frames == 0

    @pytest.mark.asyncio
    async def test_close_idempotent(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test concurrent and repeated close calls tear down once."""
        recorder = make_recorder()
        session, task = run_session(recorder)
        client_socket.feed(_init())
        await eventually(lambda: session.state is SessionState.READY)

        await asyncio.gather(session.close(), session.close())
        await session.close()
        await asyncio.wait_for(task, 2)

        assert client_socket.close_calls == 1
        assert recorder.client.close_calls == 1

    @pytest.mark.asyncio
    async def test_close_before_init(self, client_socket: FakeClientSocket, make_recorder, run_session) -> None:
        """Test closing a session that never dialled."""
        recorder = make_recorder()
        session, task = run_session(recorder)

        await session.close()
        await asyncio.wait_for(task, 2)

        assert session.state is SessionState.CLOSED
        assert recorder.clients == []
        assert client_socket.closed
