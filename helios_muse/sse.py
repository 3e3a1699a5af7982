"""Event-stream parsing – bytes to lines to payloads to text fragments."""

from __future__ import annotations

import codecs
import enum
import json
from dataclasses import dataclass

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class ByteDecoder:
    """Incremental UTF-8 decoder that keeps split multi-byte characters
    pending until the rest of their bytes arrive."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def decode(self, chunk: bytes | None = None, *, final: bool = False) -> str:
        return self._decoder.decode(chunk or b"", final=final)

    def flush(self) -> str:
        """Emit whatever is pending, substituting U+FFFD for truncated bytes."""
        return self.decode(final=True)


class LineReassembler:
    """Buffer decoded text and hand back complete lines."""

    def __init__(self):
        self._buf = ""

    def feed(self, text: str) -> None:
        self._buf += text

    def next_line(self) -> str | None:
        """Pop the next complete line, or None when only a partial line remains."""
        idx = self._buf.find("\n")
        if idx == -1:
            return None
        line, self._buf = self._buf[:idx], self._buf[idx + 1 :]
        if line.endswith("\r"):
            line = line[:-1]
        return line

    def drain(self):
        while (line := self.next_line()) is not None:
            yield line

    @property
    def pending(self) -> str:
        return self._buf

    def flush(self) -> str:
        """Return and clear the unterminated remainder."""
        rest, self._buf = self._buf, ""
        return rest


class FrameKind(enum.Enum):
    COMMENT = "comment"
    BLANK = "blank"
    DATA = "data"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class EventFrame:
    kind: FrameKind
    payload: str | None = None

    @property
    def is_done(self) -> bool:
        return self.kind is FrameKind.DATA and self.payload == DONE_SENTINEL


def parse_frame(line: str) -> EventFrame:
    if line.strip() == "":
        return EventFrame(FrameKind.BLANK)
    if line.startswith(":"):
        return EventFrame(FrameKind.COMMENT)
    if not line.startswith(DATA_PREFIX):
        return EventFrame(FrameKind.UNRECOGNIZED)
    return EventFrame(FrameKind.DATA, line[len(DATA_PREFIX) :].strip())


def extract_delta(payload: str) -> str | None:
    """Return ``choices[0].delta.content`` from a chat-completion chunk.

    Anything that is not valid JSON or does not have that shape yields None.
    """
    if payload == DONE_SENTINEL:
        return None
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None
