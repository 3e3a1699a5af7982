"""TranscriptWriter – async JSONL writer for chat turns with statistics."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

STATES = ("completed", "aborted", "rejected", "failed")


class TranscriptWriter:
    """Appends one JSON record per chat turn and keeps per-state totals.

    States: ``completed`` and ``aborted`` for turns that streamed,
    ``rejected`` for rate-limit/credit refusals, ``failed`` for requests
    that never got a stream.
    """

    def __init__(self, path: Path):
        self.path = path
        self._lock = asyncio.Lock()
        self.count = 0
        self.by_state: dict[str, int] = dict.fromkeys(STATES, 0)
        self.chars_received = 0
        path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(path, "a", encoding="utf-8")

    @property
    def closed(self) -> bool:
        return self._file.closed

    async def write(self, record: dict) -> None:
        response = record.get("response", {})
        line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
        async with self._lock:
            if self.closed:
                raise ValueError(f"transcript {self.path} is closed")
            self._file.write(line + "\n")
            self._file.flush()
            self.count += 1
            state = response.get("state")
            if state in self.by_state:
                self.by_state[state] += 1
            self.chars_received += len(response.get("content") or "")

    def close(self) -> dict:
        """Close the file and return the final summary."""
        if not self._file.closed:
            self._file.close()
        return self.get_summary()

    def get_summary(self) -> dict:
        return {"turns": self.count, **self.by_state, "chars_received": self.chars_received}
