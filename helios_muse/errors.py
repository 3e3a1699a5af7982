"""Exceptions raised by the Helios Muse client."""

from __future__ import annotations


class HeliosMuseError(Exception):
    """Base class for every error raised by helios_muse."""


class UpstreamError(HeliosMuseError):
    """The chat endpoint answered with a non-success status before streaming."""

    def __init__(self, status: int, message: str = "Failed to get response", body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class RateLimitedError(UpstreamError):
    def __init__(self, body: str = ""):
        super().__init__(429, "Rate limited", body)


class CreditsExhaustedError(UpstreamError):
    def __init__(self, body: str = ""):
        super().__init__(402, "Credits exhausted", body)


class StreamAbortedError(HeliosMuseError):
    """The transport failed mid-stream. ``partial`` holds the text received so far."""

    def __init__(self, partial: str, cause: BaseException | None = None):
        super().__init__(f"stream aborted after {len(partial)} chars: {cause}")
        self.partial = partial
        self.cause = cause


class MessageFinalizedError(HeliosMuseError):
    """A fragment was appended to a message that is already complete."""
