import json

from engine.tuning import (
    DEFAULT_MAX_CONCURRENT_VOICES,
    DEFAULT_SAMPLE_RATE,
    CadenceMode,
    SchedulerConfig,
    SelectionPolicy,
    clamp_volume,
    load_engine_tuning,
)


def test_scheduler_config_normalization_clamps_every_field() -> None:
    cfg = SchedulerConfig(
        mode="ambient",
        chaos_interval_ms=3,
        ambient_min_delay_s=-4,
        ambient_max_delay_s=-9,
        max_concurrent_voices=0,
        selection_policy="random",
    ).normalized()
    assert cfg.mode is CadenceMode.AMBIENT
    assert cfg.chaos_interval_ms == 20
    assert cfg.ambient_min_delay_s == 0
    assert cfg.ambient_max_delay_s == 0
    assert cfg.max_concurrent_voices == 1
    assert cfg.selection_policy is SelectionPolicy.RANDOM


def test_ambient_max_is_raised_to_min() -> None:
    cfg = SchedulerConfig(ambient_min_delay_s=5, ambient_max_delay_s=2).normalized()
    assert (cfg.ambient_min_delay_s, cfg.ambient_max_delay_s) == (5, 5)


def test_defaults() -> None:
    cfg = SchedulerConfig()
    assert cfg.mode is CadenceMode.CHAOS
    assert cfg.chaos_interval_ms == 200
    assert cfg.max_concurrent_voices == DEFAULT_MAX_CONCURRENT_VOICES
    assert clamp_volume(None) == 0.8


def test_clamp_volume() -> None:
    assert clamp_volume(-1) == 0.0
    assert clamp_volume(2) == 1.0
    assert clamp_volume("0.3") == 0.3
    assert clamp_volume(float("nan")) == 0.8


def test_load_engine_tuning_env_overrides_json(tmp_path, monkeypatch) -> None:
    path = tmp_path / "idle_sounds_tuning.json"
    path.write_text(json.dumps({
        "output": {"sample_rate": 44100, "channels": 1, "device": "Speakers"},
        "engine": {"max_concurrent_voices": 96},
        "network": {"timeout_s": 3.5},
    }), encoding="utf-8")
    monkeypatch.delenv("IDLESOUNDS_SAMPLE_RATE", raising=False)
    monkeypatch.delenv("IDLESOUNDS_OUTPUT_DEVICE", raising=False)
    monkeypatch.delenv("IDLESOUNDS_CHANNELS", raising=False)
    monkeypatch.delenv("IDLESOUNDS_FETCH_TIMEOUT_S", raising=False)
    monkeypatch.setenv("IDLESOUNDS_MAX_VOICES", "128")

    tuning = load_engine_tuning(path)
    assert tuning.sample_rate == 44100
    assert tuning.channels == 1
    assert tuning.output_device == "Speakers"
    assert tuning.max_concurrent_voices == 128
    assert tuning.fetch_timeout_s == 3.5


def test_load_engine_tuning_missing_or_broken_file_uses_defaults(tmp_path, monkeypatch) -> None:
    for name in ("IDLESOUNDS_SAMPLE_RATE", "IDLESOUNDS_MAX_VOICES", "IDLESOUNDS_OUTPUT_DEVICE"):
        monkeypatch.delenv(name, raising=False)
    broken = tmp_path / "broken.json"
    broken.write_text("[1, 2", encoding="utf-8")
    for path in (tmp_path / "missing.json", broken):
        tuning = load_engine_tuning(path)
        assert tuning.sample_rate == DEFAULT_SAMPLE_RATE
        assert tuning.max_concurrent_voices == DEFAULT_MAX_CONCURRENT_VOICES
        assert tuning.output_device is None
