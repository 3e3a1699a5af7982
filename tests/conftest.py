"""Pytest configuration and shared fixtures."""

import contextlib
import json
import shutil
import tempfile

import pytest
from aiohttp import web

CHAT_PATH = "/functions/v1/helios-chat"


def delta_line(content: str) -> str:
    """One ``data:`` line carrying a chat-completion content delta."""
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]}, ensure_ascii=False) + "\n"


def streaming_handler(chunks: list[bytes], captured: list | None = None, status: int = 200):
    """Build a fake gateway handler that streams ``chunks`` verbatim."""

    async def handler(request: web.Request) -> web.StreamResponse:
        if captured is not None:
            captured.append({"headers": dict(request.headers), "body": await request.json()})
        if status != 200:
            return web.json_response({"error": f"status {status}"}, status=status)
        resp = web.StreamResponse(status=200, headers={"Content-Type": "text/event-stream"})
        await resp.prepare(request)
        for chunk in chunks:
            await resp.write(chunk)
        await resp.write_eof()
        return resp

    return handler


@contextlib.asynccontextmanager
async def run_gateway(handler):
    """Serve ``handler`` on a free local port and yield the chat endpoint URL."""
    app = web.Application()
    app.router.add_post(CHAT_PATH, handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]
    try:
        yield f"http://127.0.0.1:{port}{CHAT_PATH}"
    finally:
        await runner.cleanup()


@pytest.fixture
def temp_transcript_dir():
    """Create a temporary directory for transcript output."""
    out_dir = tempfile.mkdtemp(prefix="helios_muse_test_")
    yield out_dir
    shutil.rmtree(out_dir, ignore_errors=True)
