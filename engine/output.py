"""
Output backend: one sounddevice stream that sums every live voice.

The PortAudio callback runs on its own thread. It only reads a snapshot of the
voice list (guarded by a lock), advances each voice's cursor, and hands natural
ends back to the engine loop with call_soon_threadsafe. Nothing in the callback
logs or blocks.
"""
from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Protocol

import numpy as np

from engine.cue import Voice
from engine.errors import PlaybackPermissionError
from engine.tuning import DEFAULT_BLOCK_FRAMES, DEFAULT_CHANNELS, DEFAULT_SAMPLE_RATE
from log.log_manager import LogManager

if TYPE_CHECKING:
    import sounddevice as sd

VoiceFinished = Callable[[Voice], None]


class OutputBackend(Protocol):
    @property
    def unlocked(self) -> bool: ...

    def resume(self) -> None: ...

    def start_voice(self, voice: Voice, on_finished: VoiceFinished) -> None: ...

    def stop_voice(self, voice: Voice) -> None: ...

    def close(self) -> None: ...


class OutputMixer:
    def __init__(
        self,
        *,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        channels: int = DEFAULT_CHANNELS,
        block_frames: int = DEFAULT_BLOCK_FRAMES,
        device: object = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        log: Optional[LogManager] = None,
    ) -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.block_frames = int(block_frames)
        self.device = device
        self.log = log or LogManager()
        self._loop = loop
        self._lock = threading.Lock()
        self._voices: List[Voice] = []
        # voice_id -> completion callback; only touched on the loop thread.
        self._on_finished: Dict[str, VoiceFinished] = {}
        self._stream: Optional[sd.OutputStream] = None

    @property
    def unlocked(self) -> bool:
        stream = self._stream
        return stream is not None and bool(stream.active)

    def resume(self) -> None:
        """Open and start the output stream. This is the audio unlock step."""
        if self.unlocked:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._close_stream()
        try:
            import sounddevice as sd
        except OSError as e:
            self.log.error(source="output", message="portaudio_unavailable", metadata={"error": str(e)})
            raise PlaybackPermissionError(f"audio output unavailable: {e}") from e
        try:
            stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                blocksize=self.block_frames,
                callback=self._callback,
                device=self.device,
            )
            stream.start()
        except (sd.PortAudioError, OSError, ValueError) as e:
            self.log.error(source="output", message="output_open_failed", metadata={"device": str(self.device), "error": str(e)})
            raise PlaybackPermissionError(f"audio output unavailable: {e}") from e
        self._stream = stream
        self.log.info(source="output", message="output_opened", metadata={"device": str(self.device), "sample_rate": self.sample_rate, "channels": self.channels, "block_frames": self.block_frames})

    def start_voice(self, voice: Voice, on_finished: VoiceFinished) -> None:
        if not self.unlocked:
            raise PlaybackPermissionError("audio output is locked; arm playback first")
        self._on_finished[voice.voice_id] = on_finished
        with self._lock:
            self._voices.append(voice)

    def stop_voice(self, voice: Voice) -> None:
        voice.stopped = True
        self._on_finished.pop(voice.voice_id, None)
        with self._lock:
            try:
                self._voices.remove(voice)
            except ValueError:
                pass

    def live_count(self) -> int:
        with self._lock:
            return len(self._voices)

    def _notify_finished(self, voice: Voice) -> None:
        cb = self._on_finished.pop(voice.voice_id, None)
        if cb is not None:
            cb(voice)

    def _callback(self, outdata, frames, time_info, status) -> None:
        # STRICTLY REAL-TIME SAFE: mixing and flag updates only.
        outdata.fill(0.0)
        with self._lock:
            voices = tuple(self._voices)
        if not voices:
            return

        ended = []
        for voice in voices:
            if voice.stopped or voice.finished:
                continue
            pcm = voice.buffer.pcm
            start = voice.position
            end = min(start + frames, pcm.shape[0])
            n = end - start
            if n > 0:
                ch = min(pcm.shape[1], outdata.shape[1])
                outdata[:n, :ch] += pcm[start:end, :ch] * voice.gain
            voice.position = end
            if end >= pcm.shape[0]:
                voice.finished = True
                ended.append(voice)

        np.clip(outdata, -1.0, 1.0, out=outdata)

        if ended:
            with self._lock:
                for voice in ended:
                    try:
                        self._voices.remove(voice)
                    except ValueError:
                        pass
            loop = self._loop
            if loop is not None and not loop.is_closed():
                for voice in ended:
                    loop.call_soon_threadsafe(self._notify_finished, voice)

    def _close_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        import sounddevice as sd
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            self.log.warning(source="output", message="output_close_failed", metadata={"error": str(e)})

    def close(self) -> None:
        self._close_stream()
        with self._lock:
            voices = list(self._voices)
            self._voices.clear()
        for voice in voices:
            voice.stopped = True
        self._on_finished.clear()
