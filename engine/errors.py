from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base class for every error raised by the playback core."""


class FetchError(EngineError):
    """A sound resource could not be retrieved (transport failure or non-success status)."""

    def __init__(self, url: str, reason: str, *, status: Optional[int] = None) -> None:
        self.url = url
        self.reason = reason
        self.status = status
        detail = f"HTTP {status}: {reason}" if status is not None else reason
        super().__init__(f"fetch failed for {url}: {detail}")


class DecodeError(EngineError):
    """Retrieved bytes are not a decodable audio payload."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"decode failed for {url}: {reason}")


class PlaybackPermissionError(EngineError):
    """Audio output is locked: no user gesture yet, or the output device refused to open."""


class CapacityExceeded(EngineError):
    """The voice cap is reached. Signals a suppressed attempt, not a failure."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"voice cap reached ({limit})")
