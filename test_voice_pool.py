import pytest

from conftest import FakeOutput, fake_decode
from engine.errors import CapacityExceeded, PlaybackPermissionError
from engine.voice_pool import VoicePool
from log.log_manager import LogManager

A = "https://cdn.example/a.mp3"


def _pool(output: FakeOutput, limit: int = 3) -> VoicePool:
    return VoicePool(output, limit=limit, log=LogManager(echo=False))


def test_same_buffer_plays_as_independent_voices(output) -> None:
    pool = _pool(output)
    buf = fake_decode(b"a", A)
    h1 = pool.play(buf, 0.5)
    h2 = pool.play(buf, 0.5)
    assert h1.voice_id != h2.voice_id
    assert len(pool) == 2
    assert [v.voice_id for v in output.started] == [h1.voice_id, h2.voice_id]


def test_play_at_cap_raises_capacity_exceeded(output) -> None:
    pool = _pool(output, limit=2)
    buf = fake_decode(b"a", A)
    pool.play(buf, 1.0)
    pool.play(buf, 1.0)
    with pytest.raises(CapacityExceeded) as err:
        pool.play(buf, 1.0)
    assert err.value.limit == 2
    assert len(pool) == 2


def test_locked_output_does_not_register_voice() -> None:
    output = FakeOutput(unlocked=False)
    pool = _pool(output)
    with pytest.raises(PlaybackPermissionError):
        pool.play(fake_decode(b"a", A), 1.0)
    assert len(pool) == 0


def test_natural_end_removes_voice_and_fires_hook_once(output) -> None:
    pool = _pool(output)
    ended = []
    finished_events = []
    pool.add_finished_listener(finished_events.append)
    handle = pool.play(fake_decode(b"a", A), 1.0, on_end=lambda v: ended.append(v.voice_id))

    output.finish(handle.voice_id)

    assert len(pool) == 0
    assert ended == [handle.voice_id]
    assert handle.finished
    assert finished_events[0].reason == "eof"
    assert finished_events[0].voice_info.url == A


def test_enforce_cap_sweeps_finished_voices(output) -> None:
    pool = _pool(output, limit=2)
    buf = fake_decode(b"a", A)
    h1 = pool.play(buf, 1.0)
    pool.play(buf, 1.0)
    assert not pool.enforce_cap()

    # Output marked it finished but the completion callback has not landed yet.
    output.live[h1.voice_id].finished = True
    assert pool.enforce_cap()
    assert h1.voice_id not in pool.voice_ids()
    assert len(pool) == 1


def test_stop_all_is_idempotent_and_fires_hooks(output) -> None:
    pool = _pool(output)
    ended = []
    buf = fake_decode(b"a", A)
    for _ in range(3):
        pool.play(buf, 1.0, on_end=lambda v: ended.append(v.voice_id))

    assert pool.stop_all() == 3
    assert pool.stop_all() == 0
    assert len(pool) == 0
    assert len(output.stopped) == 3
    assert len(ended) == 3


def test_stop_single_voice(output) -> None:
    pool = _pool(output)
    buf = fake_decode(b"a", A)
    h1 = pool.play(buf, 1.0)
    h2 = pool.play(buf, 1.0)
    h1.stop()
    h1.stop()
    assert pool.voice_ids() == [h2.voice_id]
    assert output.stopped == [h1.voice_id]


def test_set_gain_applies_to_live_voices_and_clamps(output) -> None:
    pool = _pool(output)
    buf = fake_decode(b"a", A)
    pool.play(buf, 0.8)
    pool.play(buf, 0.8)
    pool.set_gain(3.0)
    assert all(v.gain == 1.0 for v in output.live.values())
    pool.set_gain(0.25)
    assert all(v.gain == 0.25 for v in output.live.values())
