from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from engine.track import DecodedBuffer


@dataclass(slots=True, eq=False)
class Voice:
    voice_id: str
    buffer: DecodedBuffer
    gain: float = 1.0
    # Frame cursor, advanced by the output callback thread.
    position: int = 0
    # Set by the output backend once the last frame has been rendered.
    finished: bool = False
    stopped: bool = False
    started_at: Optional[datetime] = None
    on_end: Optional[Callable[["Voice"], None]] = field(default=None, repr=False)

    @property
    def url(self) -> str:
        return self.buffer.url


@dataclass(frozen=True, slots=True)
class VoiceInfo:
    """Immutable snapshot of a voice for logging and events."""
    voice_id: str
    url: str
    gain: float
    duration_seconds: float
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    removal_reason: str = ""  # eof, stopped, stop_all, swept
