"""
Engine Public Event API

This module defines the events the playback engine reports to its observer.
Events are immutable and carry no behavior; the observer decides how to render
them (console, Qt log panel, status label, tests).

Design Principles:
- All events are frozen dataclasses (immutable)
- No Qt imports or GUI dependencies
- Every playback attempt produces exactly one AttemptResult, whatever happened

Event Categories:
1. ATTEMPT RESULTS: one per scheduled or manual playback attempt.
   - AttemptResult: outcome of the attempt pipeline (played, skipped, error, ...)

2. LIFECYCLE EVENTS:
   - VoiceFinishedEvent: a voice left the pool (natural end or stop)
   - GateStateEvent: PlaybackGate entered a new state
   - PlaylistChangedEvent: active playlist was rebuilt
   - PreloadReport: result of a preload batch

3. DIAGNOSTIC EVENTS:
   - PermissionRequiredEvent: output is locked, the UI must ask for the gesture again
   - StatusEvent / LogLineEvent: text for the UI collaborator
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class AttemptOutcome(str, Enum):
    PLAYED = "played"
    SKIPPED_UNARMED = "skipped_unarmed"
    SKIPPED_EMPTY = "skipped_empty"
    CAPACITY = "capacity"
    FETCH_ERROR = "fetch_error"
    DECODE_ERROR = "decode_error"
    PERMISSION = "permission"
    # Scheduler was stopped while the buffer was being fetched/decoded.
    CANCELLED = "cancelled"
    # Unexpected exception inside the pipeline; logged, cadence continues.
    FAILED = "failed"


# ==============================================================================
# ATTEMPT RESULTS
# ==============================================================================

@dataclass(frozen=True, slots=True)
class AttemptResult:
    """
    Outcome of one playback attempt.

    Invariant: Exactly one AttemptResult per attempt, delivered after the attempt resolved.
    Invariant: voice_id is set only when outcome is PLAYED.
    Invariant: url/index are set once selection happened (-1 / None before that).

    Fields:
        outcome: What happened.
        url: Selected sound, if any.
        index: Selected playlist index, -1 when nothing was selected.
        voice_id: Id of the created voice (PLAYED only).
        error: Human-readable error text for error outcomes.
        active_voices: Pool size right after the attempt.
        manual: True for the UI test button, False for cadence ticks.
    """
    outcome: AttemptOutcome
    url: Optional[str] = None
    index: int = -1
    voice_id: Optional[str] = None
    error: str = ""
    active_voices: int = 0
    manual: bool = False

    @property
    def played(self) -> bool:
        return self.outcome is AttemptOutcome.PLAYED

    @property
    def is_error(self) -> bool:
        return self.outcome in (AttemptOutcome.FETCH_ERROR, AttemptOutcome.DECODE_ERROR, AttemptOutcome.PERMISSION, AttemptOutcome.FAILED)


# ==============================================================================
# LIFECYCLE EVENTS
# ==============================================================================

@dataclass(frozen=True, slots=True)
class VoiceFinishedEvent:
    """
    Emitted when a voice is removed from the pool.

    Fields:
        voice_info: VoiceInfo snapshot with stopped_at and removal_reason populated.
        reason: "eof", "stopped", "stop_all" or "swept".
    """
    voice_info: object  # VoiceInfo
    reason: str


@dataclass(frozen=True, slots=True)
class GateStateEvent:
    """
    Emitted after every real PlaybackGate transition (never on idempotent re-entry).

    Fields:
        state: New state name ("unarmed", "armed_silent", "armed_active").
        previous: Previous state name.
        scene: Scene state name at the time of the transition.
    """
    state: str
    previous: str
    scene: str


@dataclass(frozen=True, slots=True)
class PlaylistChangedEvent:
    urls: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class PreloadReport:
    """
    Result of BufferCache.preload_all. Partial success is normal.

    Fields:
        loaded: urls now available in the cache.
        failed: url -> error text for every url that could not be fetched or decoded.
    """
    loaded: tuple[str, ...] = ()
    failed: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


# ==============================================================================
# DIAGNOSTIC EVENTS
# ==============================================================================

@dataclass(frozen=True, slots=True)
class PermissionRequiredEvent:
    """Output could not be unlocked; the UI should offer the arm gesture again."""
    reason: str


@dataclass(frozen=True, slots=True)
class StatusEvent:
    text: str
    color: str


@dataclass(frozen=True, slots=True)
class LogLineEvent:
    text: str
