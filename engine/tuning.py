from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any


# Central defaults (used as fallbacks when env vars and/or idle_sounds_tuning.json are absent).
DEFAULT_VOLUME = 0.8
DEFAULT_CHAOS_INTERVAL_MS = 200
MIN_CHAOS_INTERVAL_MS = 20
# Floor for an Ambient re-arm after an attempt that started no voice (empty playlist, failing urls).
MIN_AMBIENT_RETRY_MS = 250
DEFAULT_AMBIENT_MIN_DELAY_S = 2
DEFAULT_AMBIENT_MAX_DELAY_S = 8
DEFAULT_MAX_CONCURRENT_VOICES = 64

DEFAULT_SAMPLE_RATE = 48000
DEFAULT_CHANNELS = 2
DEFAULT_BLOCK_FRAMES = 1024
DEFAULT_FETCH_TIMEOUT_S = 10.0


class CadenceMode(str, Enum):
    CHAOS = "chaos"
    AMBIENT = "ambient"


class SelectionPolicy(str, Enum):
    NO_REPEAT = "no_repeat"
    RANDOM = "random"


def clamp_volume(v: Any) -> float:
    try:
        v = float(v)
    except (TypeError, ValueError):
        return DEFAULT_VOLUME
    if v != v:  # NaN
        return DEFAULT_VOLUME
    return max(0.0, min(1.0, v))


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    """Cadence settings. Mutable at runtime by replacing the whole config."""

    mode: CadenceMode = CadenceMode.CHAOS
    chaos_interval_ms: int = DEFAULT_CHAOS_INTERVAL_MS
    ambient_min_delay_s: int = DEFAULT_AMBIENT_MIN_DELAY_S
    ambient_max_delay_s: int = DEFAULT_AMBIENT_MAX_DELAY_S
    max_concurrent_voices: int = DEFAULT_MAX_CONCURRENT_VOICES
    selection_policy: SelectionPolicy = SelectionPolicy.NO_REPEAT

    def normalized(self) -> "SchedulerConfig":
        """Return a copy with every field coerced into its documented range."""
        min_s = max(0, int(self.ambient_min_delay_s))
        max_s = max(min_s, int(self.ambient_max_delay_s))
        return SchedulerConfig(
            mode=CadenceMode(self.mode),
            chaos_interval_ms=max(MIN_CHAOS_INTERVAL_MS, int(self.chaos_interval_ms)),
            ambient_min_delay_s=min_s,
            ambient_max_delay_s=max_s,
            max_concurrent_voices=max(1, int(self.max_concurrent_voices)),
            selection_policy=SelectionPolicy(self.selection_policy),
        )

    def with_interval(self, interval_ms: int) -> "SchedulerConfig":
        return replace(self, chaos_interval_ms=int(interval_ms)).normalized()

    def with_mode(self, mode: CadenceMode) -> "SchedulerConfig":
        return replace(self, mode=CadenceMode(mode)).normalized()


@dataclass(frozen=True, slots=True)
class EngineTuning:
    """Loaded tuning values (output format, voice cap, network)."""

    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS
    block_frames: int = DEFAULT_BLOCK_FRAMES
    max_concurrent_voices: int = DEFAULT_MAX_CONCURRENT_VOICES
    fetch_timeout_s: float = DEFAULT_FETCH_TIMEOUT_S
    # Output device index or name; None selects the system default.
    output_device: int | str | None = None


def _repo_root() -> Path:
    # engine/ is a direct child of repo root.
    return Path(__file__).resolve().parents[1]


def _is_frozen() -> bool:
    # PyInstaller sets sys.frozen.
    return bool(getattr(sys, "frozen", False))


def _base_dir_for_relative_paths() -> Path:
    # For a frozen app, relative paths resolve next to the executable.
    if _is_frozen():
        try:
            return Path(sys.executable).resolve().parent
        except Exception:
            pass
    return _repo_root()


def resolve_tuning_path() -> Path:
    env = (os.environ.get("IDLESOUNDS_TUNING_PATH") or "").strip()
    if env:
        p = Path(env)
        if not p.is_absolute():
            p = _base_dir_for_relative_paths() / p
        return p
    return _base_dir_for_relative_paths() / "idle_sounds_tuning.json"


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            return None
        return data
    except (OSError, ValueError):
        return None


def _get(obj: dict[str, Any], *keys: str) -> Any:
    cur: Any = obj
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return None
        cur = cur[k]
    return cur


def _as_int(value: Any) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> float | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _pick(env_key: str, json_value: Any, default: Any, convert) -> Any:
    # Env wins over JSON, JSON wins over defaults.
    v = convert(os.environ.get(env_key))
    if v is not None:
        return v
    v = convert(json_value)
    if v is not None:
        return v
    return default


def load_engine_tuning(path: Path | None = None) -> EngineTuning:
    data = _read_json(path or resolve_tuning_path()) or {}

    device_raw = os.environ.get("IDLESOUNDS_OUTPUT_DEVICE") or _get(data, "output", "device")
    device: int | str | None = None
    if device_raw not in (None, ""):
        device = _as_int(device_raw)
        if device is None:
            device = str(device_raw)

    return EngineTuning(
        sample_rate=_pick("IDLESOUNDS_SAMPLE_RATE", _get(data, "output", "sample_rate"), DEFAULT_SAMPLE_RATE, _as_int),
        channels=_pick("IDLESOUNDS_CHANNELS", _get(data, "output", "channels"), DEFAULT_CHANNELS, _as_int),
        block_frames=_pick("IDLESOUNDS_BLOCK_FRAMES", _get(data, "output", "block_frames"), DEFAULT_BLOCK_FRAMES, _as_int),
        max_concurrent_voices=max(1, _pick("IDLESOUNDS_MAX_VOICES", _get(data, "engine", "max_concurrent_voices"), DEFAULT_MAX_CONCURRENT_VOICES, _as_int)),
        fetch_timeout_s=_pick("IDLESOUNDS_FETCH_TIMEOUT_S", _get(data, "network", "timeout_s"), DEFAULT_FETCH_TIMEOUT_S, _as_float),
        output_device=device,
    )
