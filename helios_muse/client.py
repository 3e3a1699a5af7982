"""MuseClient – send the conversation to the chat endpoint and stream the reply."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, AsyncIterator

import aiohttp

from helios_muse.assembler import CompleteCallback, SessionState, StreamAssembler, UpdateCallback
from helios_muse.conversation import Conversation, Message
from helios_muse.errors import (
    CreditsExhaustedError,
    HeliosMuseError,
    RateLimitedError,
    StreamAbortedError,
    UpstreamError,
)

if TYPE_CHECKING:
    from helios_muse.transcript import TranscriptWriter

log = logging.getLogger("helios-muse")

DEFAULT_ENDPOINT = "http://127.0.0.1:54321/functions/v1/helios-chat"
DEFAULT_TIMEOUT = 300.0

# Transcript states for turns that never reached a streaming session
REJECTED = "rejected"
FAILED = "failed"


@dataclass
class MuseConfig:
    endpoint: str = field(default_factory=lambda: os.environ.get("HELIOS_MUSE_ENDPOINT", DEFAULT_ENDPOINT))
    api_key: str = field(default_factory=lambda: os.environ.get("HELIOS_MUSE_API_KEY", ""))
    timeout: float = DEFAULT_TIMEOUT


def redact(value: str) -> str:
    return value[:12] + "..." if len(value) > 12 else "***"


class MuseClient:
    """Streams assistant replies from the Helios chat endpoint.

    Use as an async context manager so the underlying ``aiohttp.ClientSession``
    is closed on exit, or pass in a session owned by the caller.
    """

    def __init__(
        self,
        config: MuseConfig | None = None,
        session: aiohttp.ClientSession | None = None,
        writer: "TranscriptWriter | None" = None,
    ):
        self.config = config or MuseConfig()
        self._session = session
        self._owns_session = session is None
        self.writer = writer
        self.turn_counter = 0

    async def __aenter__(self) -> "MuseClient":
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    @contextlib.asynccontextmanager
    async def open_stream(self, messages: list[dict[str, str]]) -> AsyncIterator[aiohttp.ClientResponse]:
        """POST the history and yield the response once its status is known good.

        429 and 402 are raised as :class:`RateLimitedError` and
        :class:`CreditsExhaustedError`; any other non-2xx status as
        :class:`UpstreamError`. No body is read from a failed response.
        """
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=self.config.timeout)
        async with self.session.post(
            self.config.endpoint,
            json={"messages": messages},
            headers=self._headers(),
            timeout=timeout,
        ) as resp:
            if resp.status == 429:
                raise RateLimitedError(await resp.text())
            if resp.status == 402:
                raise CreditsExhaustedError(await resp.text())
            if not 200 <= resp.status < 300:
                raise UpstreamError(resp.status, body=await resp.text())
            yield resp

    async def stream_reply(
        self,
        messages: list[dict[str, str]],
        on_update: UpdateCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> StreamAssembler:
        """Request a reply and assemble it; returns the finished session."""
        async with self.open_stream(messages) as resp:
            assembler = StreamAssembler(on_update=on_update, on_complete=on_complete)
            await assembler.consume(resp.content.iter_any())
        return assembler

    async def chat(self, conversation: Conversation, text: str, on_update: UpdateCallback | None = None) -> Message:
        """Send ``text`` as the next user turn and stream the reply into ``conversation``.

        Returns the assistant message that ends the turn: the streamed reply,
        or the apology when the request or the stream failed. Rate-limit and
        credit errors propagate without an apology so the caller can tell the
        user what happened.
        """
        self.turn_counter += 1
        turn = self.turn_counter
        log_prefix = f"[Turn {turn}]"
        req_id = f"req_{uuid.uuid4().hex[:12]}"
        t0 = time.monotonic()

        conversation.add_user(text)
        messages = conversation.api_messages()
        log.info(f"{log_prefix} → POST {self.config.endpoint} ({len(messages)} messages)")

        reply: Message | None = None
        assembler: StreamAssembler | None = None
        status: int | None = None

        def _update(current: str) -> None:
            reply.content = current
            if on_update is not None:
                on_update(current)

        try:
            async with self.open_stream(messages) as resp:
                status = resp.status
                reply = conversation.start_reply()
                assembler = StreamAssembler(on_update=_update)
                await assembler.consume(resp.content.iter_any())
        except (RateLimitedError, CreditsExhaustedError) as exc:
            log.warning(f"{log_prefix} ← {exc.status} {exc}")
            await self._record(req_id, turn, t0, messages, exc.status, REJECTED, "")
            raise
        except asyncio.CancelledError:
            partial = assembler.text if assembler else ""
            log.info(f"{log_prefix} cancelled after {len(partial)} chars")
            await asyncio.shield(
                self._record(req_id, turn, t0, messages, status, SessionState.ABORTED.value, partial)
            )
            raise
        except (HeliosMuseError, aiohttp.ClientError, ConnectionError, asyncio.TimeoutError) as exc:
            if isinstance(exc, UpstreamError):
                status = exc.status
            # No session was started when the request itself failed
            state = SessionState.ABORTED.value if assembler is not None else FAILED
            partial = exc.partial if isinstance(exc, StreamAbortedError) else ""
            log.error(f"{log_prefix} chat error ({state}): {exc}")
            await self._record(req_id, turn, t0, messages, status, state, partial)
            return conversation.add_apology()

        duration_ms = int((time.monotonic() - t0) * 1000)
        log.info(
            f"{log_prefix} ← {status} stream {assembler.state.value} "
            f"({duration_ms}ms, {len(assembler.text)} chars, skipped={assembler.skipped_payloads})"
        )
        await self._record(req_id, turn, t0, messages, status, assembler.state.value, assembler.text)
        return reply

    async def _record(
        self,
        req_id: str,
        turn: int,
        t0: float,
        messages: list[dict[str, str]],
        status: int | None,
        state: str,
        content: str,
    ) -> None:
        if self.writer is None:
            return
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": req_id,
            "turn": turn,
            "duration_ms": int((time.monotonic() - t0) * 1000),
            "request": {
                "endpoint": self.config.endpoint,
                "authorization": redact(self.config.api_key),
                "messages": messages,
            },
            "response": {
                "status": status,
                "state": state,
                "content": content,
            },
        }
        await self.writer.write(record)
