from __future__ import annotations

import queue
from typing import Tuple

from engine.messages.events import (
    AttemptResult,
    GateStateEvent,
    LogLineEvent,
    PermissionRequiredEvent,
    PlaylistChangedEvent,
    PreloadReport,
    StatusEvent,
    VoiceFinishedEvent,
)


class EngineObserver:
    """Receives everything the engine reports. Methods default to no-ops."""

    def on_attempt(self, result: AttemptResult) -> None:
        pass

    def on_voice_finished(self, event: VoiceFinishedEvent) -> None:
        pass

    def on_gate_state(self, event: GateStateEvent) -> None:
        pass

    def on_status(self, text: str, color: str) -> None:
        pass

    def on_playlist(self, urls: Tuple[str, ...]) -> None:
        pass

    def on_preload(self, report: PreloadReport) -> None:
        pass

    def on_permission_required(self, reason: str) -> None:
        pass

    def on_log_line(self, text: str) -> None:
        pass


class QueueObserver(EngineObserver):
    """Forward engine reports as event objects onto a thread-safe queue.

    Used when the engine runs on its own loop thread and the GUI drains the
    queue from a QTimer.
    """

    def __init__(self, evt_q: "queue.Queue[object] | None" = None) -> None:
        self.evt_q: "queue.Queue[object]" = evt_q if evt_q is not None else queue.Queue()

    def _put(self, evt: object) -> None:
        self.evt_q.put_nowait(evt)

    def on_attempt(self, result: AttemptResult) -> None:
        self._put(result)

    def on_voice_finished(self, event: VoiceFinishedEvent) -> None:
        self._put(event)

    def on_gate_state(self, event: GateStateEvent) -> None:
        self._put(event)

    def on_status(self, text: str, color: str) -> None:
        self._put(StatusEvent(text=text, color=color))

    def on_playlist(self, urls: Tuple[str, ...]) -> None:
        self._put(PlaylistChangedEvent(urls=tuple(urls)))

    def on_preload(self, report: PreloadReport) -> None:
        self._put(report)

    def on_permission_required(self, reason: str) -> None:
        self._put(PermissionRequiredEvent(reason=reason))

    def on_log_line(self, text: str) -> None:
        self._put(LogLineEvent(text=text))
