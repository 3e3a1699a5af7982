"""StreamAssembler – turn a streamed chat response body into one growing message."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import AsyncIterable, Callable

import aiohttp

from helios_muse.errors import MessageFinalizedError, StreamAbortedError
from helios_muse.sse import ByteDecoder, FrameKind, LineReassembler, extract_delta, parse_frame

log = logging.getLogger("helios-muse")

UpdateCallback = Callable[[str], None]
CompleteCallback = Callable[["SessionState", str], None]

# Read errors that end a session as ABORTED instead of propagating raw
TRANSPORT_ERRORS = (aiohttp.ClientError, ConnectionError, asyncio.TimeoutError)


class MessageAccumulator:
    """Append-only text buffer for one assistant turn.

    Subscribers receive the full current text after every non-empty append,
    never just the delta.
    """

    def __init__(self, on_update: UpdateCallback | None = None):
        self._parts: list[str] = []
        self._text = ""
        self._finalized = False
        self._subscribers: list[UpdateCallback] = []
        if on_update is not None:
            self._subscribers.append(on_update)

    def subscribe(self, callback: UpdateCallback) -> None:
        self._subscribers.append(callback)

    def append(self, fragment: str) -> None:
        if self._finalized:
            raise MessageFinalizedError("message is already finalized")
        if not fragment:
            return
        self._parts.append(fragment)
        self._text += fragment
        for callback in self._subscribers:
            callback(self._text)

    def finalize(self) -> None:
        self._finalized = True

    @property
    def text(self) -> str:
        return self._text

    @property
    def fragments(self) -> list[str]:
        return list(self._parts)

    @property
    def finalized(self) -> bool:
        return self._finalized


class SessionState(enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.ABORTED)


class StreamAssembler:
    """One streaming session: feed raw body chunks, read the assembled message.

    Chunks are processed synchronously and in order. The session ends as
    COMPLETED on end-of-stream or a ``[DONE]`` payload, and as ABORTED on
    cancellation or a transport error; in both cases the text received so
    far stays available through :attr:`text`.
    """

    def __init__(
        self,
        on_update: UpdateCallback | None = None,
        on_complete: CompleteCallback | None = None,
        accumulator: MessageAccumulator | None = None,
    ):
        self.accumulator = accumulator if accumulator is not None else MessageAccumulator()
        if on_update is not None:
            self.accumulator.subscribe(on_update)
        self._on_complete = on_complete
        self._decoder = ByteDecoder()
        self._lines = LineReassembler()
        self.state = SessionState.IDLE
        self.error: BaseException | None = None
        self.skipped_payloads = 0

    @property
    def text(self) -> str:
        return self.accumulator.text

    @property
    def done(self) -> bool:
        return self.state.terminal

    def start(self) -> None:
        if self.state is SessionState.IDLE:
            self.state = SessionState.STREAMING

    def feed(self, chunk: bytes) -> None:
        if self.state.terminal:
            log.debug(f"ignoring {len(chunk)} bytes fed to {self.state.value} session")
            return
        self.start()
        self._lines.feed(self._decoder.decode(chunk))
        self._process_lines()

    def _process_lines(self) -> None:
        for line in self._lines.drain():
            frame = parse_frame(line)
            if frame.kind is not FrameKind.DATA:
                continue
            if frame.is_done:
                self._end(SessionState.COMPLETED)
                return
            fragment = extract_delta(frame.payload)
            if fragment is None:
                self.skipped_payloads += 1
                log.debug(f"skipped payload without content: {frame.payload[:80]!r}")
                continue
            self.accumulator.append(fragment)

    def finish(self) -> None:
        """Transport reported end-of-stream."""
        if self.state.terminal:
            return
        self._lines.feed(self._decoder.flush())
        self._process_lines()
        if self.state.terminal:
            return
        rest = self._lines.flush()
        if rest:
            log.debug(f"discarding unterminated trailing line: {rest[:80]!r}")
        self._end(SessionState.COMPLETED)

    def cancel(self) -> None:
        """Caller stopped listening; keep the partial text, emit nothing further."""
        if not self.state.terminal:
            self._end(SessionState.ABORTED)

    def abort(self, exc: BaseException) -> None:
        if not self.state.terminal:
            self.error = exc
            self._end(SessionState.ABORTED)

    def _end(self, state: SessionState) -> None:
        self.state = state
        self.accumulator.finalize()
        if self._on_complete is not None:
            self._on_complete(state, self.accumulator.text)

    async def consume(self, chunks: AsyncIterable[bytes]) -> str:
        """Drive the session from an async chunk source until it terminates."""
        if self.state.terminal:
            return self.text
        self.start()
        try:
            async for chunk in chunks:
                self.feed(chunk)
                if self.state.terminal:
                    break
        except asyncio.CancelledError:
            self.cancel()
            raise
        except TRANSPORT_ERRORS as exc:
            self.abort(exc)
            raise StreamAbortedError(self.text, exc) from exc
        self.finish()
        return self.text
