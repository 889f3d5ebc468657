from __future__ import annotations

import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

from engine.cue import Voice, VoiceInfo
from engine.errors import CapacityExceeded
from engine.messages.events import VoiceFinishedEvent
from engine.output import OutputBackend
from engine.track import DecodedBuffer
from engine.tuning import DEFAULT_MAX_CONCURRENT_VOICES, clamp_volume
from log.log_manager import LogManager


class VoiceHandle:
    """Caller-side reference to a voice owned by the pool."""

    __slots__ = ("_pool", "_voice")

    def __init__(self, pool: "VoicePool", voice: Voice) -> None:
        self._pool = pool
        self._voice = voice

    @property
    def voice_id(self) -> str:
        return self._voice.voice_id

    @property
    def url(self) -> str:
        return self._voice.url

    @property
    def finished(self) -> bool:
        return self._voice.finished or self._voice.stopped

    def stop(self) -> None:
        self._pool.stop(self._voice.voice_id)

    def __repr__(self) -> str:
        return f"VoiceHandle({self.voice_id[:8]}, {self.url!r})"


class VoicePool:
    """Live voices, capped at `limit`.

    Every trigger creates a fresh Voice so identical sounds can overlap. A voice
    leaves the pool on natural end (completion callback from the output), on a
    sweep of already-finished voices, or on an explicit stop.
    """

    def __init__(self, output: OutputBackend, *, limit: int = DEFAULT_MAX_CONCURRENT_VOICES, log: Optional[LogManager] = None) -> None:
        self._output = output
        self.limit = max(1, int(limit))
        self.log = log or LogManager()
        self._voices: Dict[str, Voice] = {}
        self._finished_listeners: List[Callable[[VoiceFinishedEvent], None]] = []

    def size(self) -> int:
        return len(self._voices)

    def __len__(self) -> int:
        return len(self._voices)

    def voice_ids(self) -> List[str]:
        return list(self._voices.keys())

    def add_finished_listener(self, listener: Callable[[VoiceFinishedEvent], None]) -> None:
        self._finished_listeners.append(listener)

    def play(self, buffer: DecodedBuffer, gain: float, on_end: Optional[Callable[[Voice], None]] = None) -> VoiceHandle:
        """Start a new voice. Raises CapacityExceeded at the cap, PlaybackPermissionError if output is locked."""
        if len(self._voices) >= self.limit:
            raise CapacityExceeded(self.limit)

        voice = Voice(
            voice_id=uuid.uuid4().hex,
            buffer=buffer,
            gain=clamp_volume(gain),
            started_at=datetime.now(),
            on_end=on_end,
        )
        # Register only once the output accepted the voice.
        self._output.start_voice(voice, self._on_voice_finished)
        self._voices[voice.voice_id] = voice
        self.log.debug(voice_id=voice.voice_id, url=voice.url, source="voice_pool", message="voice_started", metadata={"gain": voice.gain, "active": len(self._voices)})
        return VoiceHandle(self, voice)

    def _on_voice_finished(self, voice: Voice) -> None:
        self._finish(voice, "eof")

    def _finish(self, voice: Voice, reason: str) -> None:
        if self._voices.pop(voice.voice_id, None) is None:
            return
        self._emit_finished(voice, reason)
        cb = voice.on_end
        voice.on_end = None
        if cb is not None:
            try:
                cb(voice)
            except Exception as e:
                self.log.error(voice_id=voice.voice_id, url=voice.url, source="voice_pool", message="on_end_failed", metadata={"error": f"{type(e).__name__}: {e}"})

    def _emit_finished(self, voice: Voice, reason: str) -> None:
        if not self._finished_listeners:
            return
        info = VoiceInfo(
            voice_id=voice.voice_id,
            url=voice.url,
            gain=voice.gain,
            duration_seconds=voice.buffer.duration_seconds,
            started_at=voice.started_at,
            stopped_at=datetime.now(),
            removal_reason=reason,
        )
        evt = VoiceFinishedEvent(voice_info=info, reason=reason)
        for listener in list(self._finished_listeners):
            listener(evt)

    def enforce_cap(self, limit: Optional[int] = None) -> bool:
        """Sweep voices the output already reports finished, then report whether there is room below `limit`."""
        if limit is None:
            limit = self.limit
        swept = [v for v in self._voices.values() if v.finished]
        for voice in swept:
            # Same path as a natural end, so Ambient re-arm hooks still fire.
            self._finish(voice, "swept")
        if swept:
            self.log.debug(source="voice_pool", message="finished_voices_swept", metadata={"swept": len(swept), "active": len(self._voices)})
        return len(self._voices) < int(limit)

    def stop(self, voice_id: str) -> None:
        voice = self._voices.get(voice_id)
        if voice is None:
            return
        self._output.stop_voice(voice)
        self._finish(voice, "stopped")

    def stop_all(self) -> int:
        """Halt and evict every voice. Idempotent."""
        voices = list(self._voices.values())
        for voice in voices:
            self._output.stop_voice(voice)
        # on_end hooks still fire; the scheduler ignores hooks from a stopped cycle.
        for voice in voices:
            self._finish(voice, "stop_all")
        if voices:
            self.log.info(source="voice_pool", message="all_voices_stopped", metadata={"stopped": len(voices)})
        return len(voices)

    def set_gain(self, gain: float) -> None:
        gain = clamp_volume(gain)
        # The output callback reads voice.gain on every block, so this is immediate.
        for voice in self._voices.values():
            voice.gain = gain
