"""Shared fakes for the engine tests.

Everything here is deterministic: timers fire only when a test advances the
ManualClock, voices end only when a test finishes them on the FakeOutput, and
"network" fetches come from a dict.
"""
from __future__ import annotations

import asyncio
import os
import random
from typing import Callable, Dict, List, Optional

import numpy as np
import pytest

from engine.cue import Voice
from engine.errors import DecodeError, FetchError, PlaybackPermissionError
from engine.track import DecodedBuffer

os.environ.setdefault("IDLESOUNDS_LOG_QUIET", "1")
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0
        self._timers: List["FakeTimer"] = []

    def timer(self) -> "FakeTimer":
        t = FakeTimer(self)
        self._timers.append(t)
        return t

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order (including ones re-armed while firing)."""
        target = round(self.now + seconds, 9)
        while True:
            due = [t for t in self._timers if t.due is not None and t.due <= target]
            if not due:
                break
            t = min(due, key=lambda x: x.due)
            self.now = t.due
            t.fire()
        self.now = target


class FakeTimer:
    """Drop-in for CancellableTimer driven by a ManualClock."""

    def __init__(self, clock: ManualClock) -> None:
        self._clock = clock
        self.due: Optional[float] = None
        self._callback: Optional[Callable[[], None]] = None
        self.arm_count = 0

    @property
    def armed(self) -> bool:
        return self.due is not None

    def arm(self, delay_s: float, callback: Callable[[], None]) -> None:
        self.due = round(self._clock.now + max(0.0, float(delay_s)), 9)
        self._callback = callback
        self.arm_count += 1

    def cancel(self) -> None:
        self.due = None
        self._callback = None

    def fire(self) -> None:
        cb = self._callback
        self.due = None
        self._callback = None
        if cb is not None:
            cb()


class FakeOutput:
    """OutputBackend that records voices instead of mixing them."""

    def __init__(self, *, unlocked: bool = False, fail_resume: bool = False) -> None:
        self._unlocked = unlocked
        self.fail_resume = fail_resume
        self.resume_calls = 0
        self.closed = False
        self.live: Dict[str, Voice] = {}
        self.started: List[Voice] = []
        self.stopped: List[str] = []
        self._on_finished: Dict[str, Callable[[Voice], None]] = {}

    @property
    def unlocked(self) -> bool:
        return self._unlocked

    def resume(self) -> None:
        self.resume_calls += 1
        if self.fail_resume:
            raise PlaybackPermissionError("audio output unavailable: device refused")
        self._unlocked = True

    def start_voice(self, voice: Voice, on_finished: Callable[[Voice], None]) -> None:
        if not self._unlocked:
            raise PlaybackPermissionError("audio output is locked; arm playback first")
        self.live[voice.voice_id] = voice
        self.started.append(voice)
        self._on_finished[voice.voice_id] = on_finished

    def stop_voice(self, voice: Voice) -> None:
        voice.stopped = True
        self.live.pop(voice.voice_id, None)
        self._on_finished.pop(voice.voice_id, None)
        self.stopped.append(voice.voice_id)

    def close(self) -> None:
        self.closed = True
        self._unlocked = False
        self.live.clear()
        self._on_finished.clear()

    def finish(self, voice_id: str) -> None:
        """Simulate the natural end of a voice."""
        voice = self.live.pop(voice_id)
        voice.finished = True
        cb = self._on_finished.pop(voice_id, None)
        if cb is not None:
            cb(voice)

    def finish_all(self) -> None:
        for voice_id in list(self.live):
            self.finish(voice_id)


class DictFetcher:
    """Async fetcher backed by a dict; unknown urls fail like a 404."""

    def __init__(self, data: Dict[str, bytes]) -> None:
        self.data = dict(data)
        self.calls: List[str] = []
        self.release: Optional[asyncio.Event] = None

    async def __call__(self, url: str) -> bytes:
        self.calls.append(url)
        if self.release is not None:
            await self.release.wait()
        else:
            await asyncio.sleep(0)
        if url not in self.data:
            raise FetchError(url, "Not Found", status=404)
        return self.data[url]


def fake_decode(data: bytes, url: str) -> DecodedBuffer:
    if data == b"garbage":
        raise DecodeError(url, "not an audio payload")
    frames = 480 * max(1, len(data))
    return DecodedBuffer(url=url, pcm=np.zeros((frames, 2), dtype=np.float32), sample_rate=48000, channels=2)


async def settle(*schedulers) -> None:
    """Let spawned attempts run to completion."""
    for _ in range(3):
        await asyncio.sleep(0)
    for s in schedulers:
        await s.wait_idle()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def output() -> FakeOutput:
    return FakeOutput(unlocked=True)


@pytest.fixture
def sounds() -> Dict[str, bytes]:
    return {
        "https://cdn.example/a.mp3": b"a",
        "https://cdn.example/b.mp3": b"bb",
        "https://cdn.example/c.mp3": b"ccc",
    }


@pytest.fixture
def fetcher(sounds) -> DictFetcher:
    return DictFetcher(sounds)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)
