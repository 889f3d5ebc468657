import asyncio

import numpy as np
import pytest

from engine.errors import PlaybackPermissionError
from engine.output import OutputMixer
from engine.track import DecodedBuffer
from engine.voice_pool import VoicePool
from log.log_manager import LogManager

A = "https://cdn.example/a.mp3"
BLOCK = 4


class RunningStream:
    """Stands in for an opened sounddevice stream."""
    active = True


def _buffer(frames: int, value: float) -> DecodedBuffer:
    return DecodedBuffer(url=A, pcm=np.full((frames, 2), value, dtype=np.float32), sample_rate=48000, channels=2)


def _mixer_and_pool(loop):
    log = LogManager(echo=False)
    mixer = OutputMixer(sample_rate=48000, channels=2, block_frames=BLOCK, loop=loop, log=log)
    mixer._stream = RunningStream()
    return mixer, VoicePool(mixer, limit=8, log=log)


async def _render(mixer: OutputMixer) -> np.ndarray:
    """Run one audio callback on a worker thread, like PortAudio does."""
    out = np.full((BLOCK, 2), 9.0, dtype=np.float32)
    await asyncio.get_running_loop().run_in_executor(None, mixer._callback, out, BLOCK, None, None)
    await asyncio.sleep(0)
    return out


def test_locked_mixer_refuses_voices() -> None:
    mixer = OutputMixer(log=LogManager(echo=False))
    pool = VoicePool(mixer, limit=2, log=LogManager(echo=False))
    assert not mixer.unlocked
    with pytest.raises(PlaybackPermissionError):
        pool.play(_buffer(8, 0.5), 1.0)
    assert mixer.live_count() == 0


def test_voices_are_summed_at_their_gain_and_clipped() -> None:
    async def main():
        mixer, pool = _mixer_and_pool(asyncio.get_running_loop())
        pool.play(_buffer(16, 0.5), 0.5)
        pool.play(_buffer(16, 0.5), 1.0)
        first = await _render(mixer)

        pool.play(_buffer(16, 0.5), 1.0)
        second = await _render(mixer)
        return first, second

    first, second = asyncio.run(main())
    np.testing.assert_allclose(first, 0.75)
    np.testing.assert_allclose(second, 1.0)


def test_silence_when_nothing_plays() -> None:
    async def main():
        mixer, _pool = _mixer_and_pool(asyncio.get_running_loop())
        return await _render(mixer)

    np.testing.assert_array_equal(asyncio.run(main()), 0.0)


def test_end_of_buffer_reaches_the_pool_on_the_loop() -> None:
    async def main():
        mixer, pool = _mixer_and_pool(asyncio.get_running_loop())
        ended, events = [], []
        pool.add_finished_listener(events.append)
        handle = pool.play(_buffer(6, 0.25), 1.0, on_end=lambda v: ended.append(v.voice_id))

        first = await _render(mixer)
        assert ended == [] and len(pool) == 1

        second = await _render(mixer)
        assert ended == [handle.voice_id]
        assert len(pool) == 0
        assert mixer.live_count() == 0

        third = await _render(mixer)
        assert ended == [handle.voice_id]
        return first, second, third, events

    first, second, third, events = asyncio.run(main())
    np.testing.assert_allclose(first, 0.25)
    np.testing.assert_allclose(second[:2], 0.25)
    np.testing.assert_array_equal(second[2:], 0.0)
    np.testing.assert_array_equal(third, 0.0)
    assert [e.reason for e in events] == ["eof"]


def test_voice_stopped_between_blocks_goes_quiet_without_an_eof() -> None:
    async def main():
        mixer, pool = _mixer_and_pool(asyncio.get_running_loop())
        ended, events = [], []
        pool.add_finished_listener(events.append)
        stopped = pool.play(_buffer(16, 0.25), 1.0, on_end=lambda v: ended.append(v.voice_id))
        pool.play(_buffer(16, 0.5), 1.0)

        before = await _render(mixer)
        pool.stop(stopped.voice_id)
        after = await _render(mixer)
        await asyncio.sleep(0)
        return before, after, ended, events, stopped, pool, mixer

    before, after, ended, events, stopped, pool, mixer = asyncio.run(main())
    np.testing.assert_allclose(before, 0.75)
    np.testing.assert_allclose(after, 0.5)
    assert ended == [stopped.voice_id]
    assert [e.reason for e in events] == ["stopped"]
    assert len(pool) == 1
    assert mixer.live_count() == 1


def test_voice_flagged_stopped_inside_a_snapshot_is_skipped() -> None:
    async def main():
        mixer, pool = _mixer_and_pool(asyncio.get_running_loop())
        handle = pool.play(_buffer(16, 0.5), 1.0)
        # The flag can flip after the callback copied the voice list.
        next(v for v in mixer._voices if v.voice_id == handle.voice_id).stopped = True
        return await _render(mixer)

    np.testing.assert_array_equal(asyncio.run(main()), 0.0)
