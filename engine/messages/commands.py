"""
Commands accepted by the AudioService.

Each command is a frozen dataclass routed by AudioService.handle_command()
onto the matching Engine operation, on the engine's own loop thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from engine.tuning import CadenceMode, SchedulerConfig


@dataclass(frozen=True, slots=True)
class ArmCommand:
    pass


@dataclass(frozen=True, slots=True)
class PreloadCommand:
    pass


@dataclass(frozen=True, slots=True)
class TriggerTestPlaybackCommand:
    pass


@dataclass(frozen=True, slots=True)
class SetVolumeCommand:
    volume: float


@dataclass(frozen=True, slots=True)
class SetPlaylistCommand:
    urls: Tuple[str, ...]


@dataclass(frozen=True, slots=True)
class LoadManifestCommand:
    source: str


@dataclass(frozen=True, slots=True)
class SetExtraUrlCommand:
    url: Optional[str]
    enabled: bool


@dataclass(frozen=True, slots=True)
class SetSchedulerConfigCommand:
    config: SchedulerConfig


@dataclass(frozen=True, slots=True)
class SetIntervalCommand:
    interval_ms: int


@dataclass(frozen=True, slots=True)
class SetModeCommand:
    mode: CadenceMode


@dataclass(frozen=True, slots=True)
class SceneStateCommand:
    active: bool


__all__ = [
    "ArmCommand",
    "PreloadCommand",
    "TriggerTestPlaybackCommand",
    "SetVolumeCommand",
    "SetPlaylistCommand",
    "LoadManifestCommand",
    "SetExtraUrlCommand",
    "SetSchedulerConfigCommand",
    "SetIntervalCommand",
    "SetModeCommand",
    "SceneStateCommand",
]
