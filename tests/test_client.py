"""Tests for MuseClient against a local fake chat gateway."""

import asyncio
import json
from pathlib import Path

import pytest
from aiohttp import web

from conftest import delta_line, run_gateway, streaming_handler
from helios_muse.assembler import SessionState
from helios_muse.client import MuseClient, MuseConfig, redact
from helios_muse.conversation import APOLOGY, GREETING, Conversation
from helios_muse.errors import CreditsExhaustedError, RateLimitedError, UpstreamError
from helios_muse.transcript import TranscriptWriter

REPLY_CHUNKS = [
    b": keep-alive\n\n",
    delta_line("Impression").encode()[:20],
    delta_line("Impression").encode()[20:] + delta_line("ism, ").encode(),
    delta_line("Monet ✨").encode(),
    b"data: [DONE]\n\n",
]


def _config(endpoint: str) -> MuseConfig:
    return MuseConfig(endpoint=endpoint, api_key="sb-publishable-key-123456")


class TestStreamReply:
    def test_streams_fragments_in_order(self):
        updates = []

        async def run():
            async with run_gateway(streaming_handler(REPLY_CHUNKS)) as endpoint:
                async with MuseClient(_config(endpoint)) as client:
                    return await client.stream_reply([{"role": "user", "content": "hi"}], on_update=updates.append)

        assembler = asyncio.run(run())
        assert assembler.text == "Impressionism, Monet ✨"
        assert assembler.state is SessionState.COMPLETED
        assert updates == ["Impression", "Impressionism, ", "Impressionism, Monet ✨"]

    def test_sends_history_and_bearer_key(self):
        captured = []
        history = [{"role": "user", "content": "Who painted Water Lilies?"}]

        async def run():
            async with run_gateway(streaming_handler(REPLY_CHUNKS, captured)) as endpoint:
                async with MuseClient(_config(endpoint)) as client:
                    await client.stream_reply(history)

        asyncio.run(run())
        assert captured[0]["body"] == {"messages": history}
        assert captured[0]["headers"]["Authorization"] == "Bearer sb-publishable-key-123456"
        assert captured[0]["headers"]["Content-Type"].startswith("application/json")

    @pytest.mark.parametrize(
        "status, error",
        [(429, RateLimitedError), (402, CreditsExhaustedError), (500, UpstreamError)],
    )
    def test_error_status_raises_before_streaming(self, status, error):
        updates = []

        async def run():
            async with run_gateway(streaming_handler(REPLY_CHUNKS, status=status)) as endpoint:
                async with MuseClient(_config(endpoint)) as client:
                    await client.stream_reply([{"role": "user", "content": "hi"}], on_update=updates.append)

        with pytest.raises(error) as excinfo:
            asyncio.run(run())
        assert excinfo.value.status == status
        assert updates == []

    def test_caller_owned_session_is_left_open(self):
        import aiohttp

        async def run():
            async with run_gateway(streaming_handler(REPLY_CHUNKS)) as endpoint:
                async with aiohttp.ClientSession() as session:
                    async with MuseClient(_config(endpoint), session=session) as client:
                        await client.stream_reply([{"role": "user", "content": "hi"}])
                    return session.closed

        assert asyncio.run(run()) is False


class TestChat:
    def test_reply_is_added_to_conversation(self):
        conversation = Conversation()

        async def run():
            async with run_gateway(streaming_handler(REPLY_CHUNKS)) as endpoint:
                async with MuseClient(_config(endpoint)) as client:
                    return await client.chat(conversation, "Tell me about Monet")

        reply = asyncio.run(run())
        assert reply.role == "assistant"
        assert reply.content == "Impressionism, Monet ✨"
        assert [m.role for m in conversation.messages] == ["assistant", "user", "assistant"]
        assert conversation.messages[0].content == GREETING

    def test_greeting_is_not_sent(self):
        captured = []
        conversation = Conversation()

        async def run():
            async with run_gateway(streaming_handler(REPLY_CHUNKS, captured)) as endpoint:
                async with MuseClient(_config(endpoint)) as client:
                    await client.chat(conversation, "first")
                    await client.chat(conversation, "second")

        asyncio.run(run())
        assert captured[0]["body"]["messages"] == [{"role": "user", "content": "first"}]
        assert captured[1]["body"]["messages"] == [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "Impressionism, Monet ✨"},
            {"role": "user", "content": "second"},
        ]

    def test_server_error_appends_apology(self):
        conversation = Conversation()

        async def run():
            async with run_gateway(streaming_handler(REPLY_CHUNKS, status=500)) as endpoint:
                async with MuseClient(_config(endpoint)) as client:
                    return await client.chat(conversation, "hello")

        reply = asyncio.run(run())
        assert reply.content == APOLOGY
        assert [m.role for m in conversation.messages] == ["assistant", "user", "assistant"]

    def test_unreachable_endpoint_appends_apology(self):
        conversation = Conversation()

        async def run():
            # Bind then release a port so nothing is listening on it
            async with run_gateway(streaming_handler(REPLY_CHUNKS)) as endpoint:
                pass
            async with MuseClient(_config(endpoint)) as client:
                return await client.chat(conversation, "hello")

        reply = asyncio.run(run())
        assert reply.content == APOLOGY

    @pytest.mark.parametrize("status, error", [(429, RateLimitedError), (402, CreditsExhaustedError)])
    def test_quota_errors_propagate_without_apology(self, status, error):
        conversation = Conversation()

        async def run():
            async with run_gateway(streaming_handler(REPLY_CHUNKS, status=status)) as endpoint:
                async with MuseClient(_config(endpoint)) as client:
                    await client.chat(conversation, "hello")

        with pytest.raises(error):
            asyncio.run(run())
        assert [m.role for m in conversation.messages] == ["assistant", "user"]

    def test_stream_cut_off_keeps_partial_and_apologises(self):
        conversation = Conversation()

        async def handler(request: web.Request) -> web.StreamResponse:
            resp = web.StreamResponse(status=200, headers={"Content-Type": "text/event-stream"})
            await resp.prepare(request)
            await resp.write(delta_line("Half a thou").encode())
            await resp.drain()
            raise RuntimeError("gateway crashed mid-stream")

        async def run():
            async with run_gateway(handler) as endpoint:
                async with MuseClient(_config(endpoint)) as client:
                    return await client.chat(conversation, "hello")

        reply = asyncio.run(run())
        assert reply.content == APOLOGY
        bubble = conversation.messages[2]
        assert bubble.role == "assistant"
        assert bubble.content == "Half a thou"

    def test_turns_are_recorded(self, temp_transcript_dir):
        path = Path(temp_transcript_dir) / "transcript.jsonl"
        writer = TranscriptWriter(path)
        conversation = Conversation()

        async def run():
            async with run_gateway(streaming_handler(REPLY_CHUNKS)) as endpoint:
                async with MuseClient(_config(endpoint), writer=writer) as client:
                    await client.chat(conversation, "Tell me about Monet")

        asyncio.run(run())
        writer.close()
        records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert len(records) == 1
        record = records[0]
        assert record["turn"] == 1
        assert record["request"]["authorization"] == "sb-publishab..."
        assert record["request"]["messages"] == [{"role": "user", "content": "Tell me about Monet"}]
        assert record["response"] == {"status": 200, "state": "completed", "content": "Impressionism, Monet ✨"}
        assert writer.get_summary()["completed"] == 1


def test_redact():
    assert redact("short") == "***"
    assert redact("sb-publishable-key-123456") == "sb-publishab..."


class TestTranscriptStates:
    def _run_chat(self, writer, handler, conversation):
        async def run():
            async with run_gateway(handler) as endpoint:
                async with MuseClient(_config(endpoint), writer=writer) as client:
                    return await client.chat(conversation, "hello")

        return asyncio.run(run())

    def test_pre_stream_error_is_recorded_as_failed(self, temp_transcript_dir):
        writer = TranscriptWriter(Path(temp_transcript_dir) / "t.jsonl")
        reply = self._run_chat(writer, streaming_handler(REPLY_CHUNKS, status=500), Conversation())
        summary = writer.close()
        assert reply.content == APOLOGY
        assert summary["failed"] == 1
        assert summary["aborted"] == 0
        record = json.loads(writer.path.read_text(encoding="utf-8"))
        assert record["response"] == {"status": 500, "state": "failed", "content": ""}

    def test_cancelled_turn_is_recorded_as_aborted(self, temp_transcript_dir):
        writer = TranscriptWriter(Path(temp_transcript_dir) / "t.jsonl")
        conversation = Conversation()
        updates = []

        async def run():
            release = asyncio.Event()

            async def handler(request: web.Request) -> web.StreamResponse:
                resp = web.StreamResponse(status=200, headers={"Content-Type": "text/event-stream"})
                await resp.prepare(request)
                await resp.write(delta_line("part").encode())
                await release.wait()
                return resp

            async with run_gateway(handler) as endpoint:
                async with MuseClient(_config(endpoint), writer=writer) as client:
                    task = asyncio.create_task(client.chat(conversation, "hello", on_update=updates.append))
                    while not updates:
                        await asyncio.sleep(0.01)
                    task.cancel()
                    with pytest.raises(asyncio.CancelledError):
                        await task
                    release.set()

        asyncio.run(run())
        summary = writer.close()
        assert conversation.last.content == "part"
        assert summary["turns"] == 1
        assert summary["aborted"] == 1
        record = json.loads(writer.path.read_text(encoding="utf-8"))
        assert record["response"] == {"status": 200, "state": "aborted", "content": "part"}
