"""
Engine Adapter: the boundary between the Qt GUI and the AudioService.

- Qt slots in (user gestures, slider moves, toggles) become engine commands
  submitted to the service loop thread.
- Engine events queued by the service observer are drained by a QTimer and
  re-emitted as Qt signals on the GUI thread.

The engine never imports Qt; this adapter never contains audio logic and
never blocks the Qt thread.
"""

from __future__ import annotations

import queue
import time
from typing import Any, Optional, Protocol

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from engine.messages.commands import (
    ArmCommand,
    PreloadCommand,
    SceneStateCommand,
    SetExtraUrlCommand,
    SetIntervalCommand,
    SetModeCommand,
    SetVolumeCommand,
    TriggerTestPlaybackCommand,
)
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
from engine.scene import ManualSceneHost
from engine.tuning import CadenceMode, clamp_volume
from log.log_manager import LogManager
from log.perf import perf_enabled, perf_print
from persistence.preferences import Preferences


class CommandSink(Protocol):
    evt_q: "queue.Queue[object]"

    def submit(self, cmd: object) -> Any: ...


class EngineAdapter(QObject):
    """
    Qt-to-AudioService bridge.

    Usage:
        adapter = EngineAdapter(service, prefs, scene_host=host, parent=window)
        adapter.status_changed.connect(window.render_status)
        button.clicked.connect(adapter.on_user_arm)
    """

    status_changed = Signal(str, str)  # text, color
    file_list_changed = Signal(list)  # urls
    log_line = Signal(str)
    permission_required = Signal(str)  # reason
    gate_state_changed = Signal(str)  # GateState value
    preload_finished = Signal(int, int)  # loaded, failed
    attempt_finished = Signal(object)  # AttemptResult
    voice_finished = Signal(str, str)  # voice_id, reason

    def __init__(
        self,
        service: CommandSink,
        prefs: Optional[Preferences] = None,
        *,
        scene_host: Optional[ManualSceneHost] = None,
        parent: Optional[QObject] = None,
        poll_interval_ms: int = 30,
        max_drain_per_poll: int = 500,
        log: Optional[LogManager] = None,
    ) -> None:
        super().__init__(parent)
        self._service = service
        self._evt_q = service.evt_q
        self._prefs = prefs
        self._scene_host = scene_host
        self._max_drain_per_poll = int(max_drain_per_poll)
        self.log = log or LogManager()

        self.urls: list[str] = []
        self.gate_state: str = "unarmed"

        self._poll_timer = QTimer(self)
        self._poll_timer.setInterval(int(poll_interval_ms))
        self._poll_timer.timeout.connect(self._poll_events)
        self._poll_timer.start()

    # ===========================================================================
    # COMMANDS (GUI -> AudioService)
    # ===========================================================================

    def _send(self, cmd: object) -> None:
        try:
            fut = self._service.submit(cmd)
        except RuntimeError as e:
            self.log.warning(source="engine_adapter", message="command_dropped", metadata={"command": type(cmd).__name__, "error": str(e)})
            return
        add_cb = getattr(fut, "add_done_callback", None)
        if add_cb is not None:
            add_cb(lambda f, name=type(cmd).__name__: self._check_future(name, f))

    def _check_future(self, name: str, fut: Any) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            self.log.error(source="engine_adapter", message="command_crashed", metadata={"command": name, "error": f"{type(exc).__name__}: {exc}"})

    @Slot()
    def on_user_arm(self) -> None:
        self._send(ArmCommand())

    @Slot()
    def on_preload_requested(self) -> None:
        self._send(PreloadCommand())

    @Slot()
    def on_test_requested(self) -> None:
        self._send(TriggerTestPlaybackCommand())

    @Slot(float)
    def on_volume_changed(self, volume: float) -> None:
        volume = clamp_volume(volume)
        if self._prefs is not None:
            self._prefs.set_pref("volume", volume)
        self._send(SetVolumeCommand(volume=volume))

    @Slot(int)
    def on_interval_changed(self, interval_ms: int) -> None:
        interval_ms = int(interval_ms)
        if self._prefs is not None:
            self._prefs.set_pref("interval_ms", interval_ms)
        self._send(SetIntervalCommand(interval_ms=interval_ms))

    @Slot(str)
    def on_mode_changed(self, mode: str) -> None:
        try:
            cadence = CadenceMode(str(mode).lower())
        except ValueError:
            self.log.warning(source="engine_adapter", message="unknown_mode", metadata={"mode": mode})
            return
        if self._prefs is not None:
            self._prefs.set_pref("mode", cadence.value)
        self._send(SetModeCommand(mode=cadence))

    @Slot(bool)
    def on_shout_toggle(self, enabled: bool) -> None:
        url = None
        if self._prefs is not None:
            self._prefs.set_pref("shout_enabled", bool(enabled))
            url = self._prefs.shout_url()
        self._send(SetExtraUrlCommand(url=url, enabled=bool(enabled)))

    @Slot(bool)
    def on_scene_toggle(self, active: bool) -> None:
        if self._scene_host is not None:
            # The service wraps the host so the change is delivered on the engine loop.
            self._scene_host.set_ready(bool(active))
        else:
            self._send(SceneStateCommand(active=bool(active)))

    def stop(self) -> None:
        self._poll_timer.stop()
        self._poll_events()

    # ===========================================================================
    # EVENTS (AudioService -> GUI)
    # ===========================================================================

    def _poll_events(self) -> None:
        """Drain the event queue (bounded per tick) and emit Qt signals."""
        t0 = time.perf_counter()
        drained = 0
        while drained < self._max_drain_per_poll:
            try:
                evt = self._evt_q.get_nowait()
            except queue.Empty:
                break
            drained += 1
            self._dispatch(evt)
        if drained and perf_enabled():
            perf_print(f"[PERF] EngineAdapter._poll_events: {drained} events {(time.perf_counter() - t0) * 1000.0:.1f}ms")

    def _dispatch(self, evt: object) -> None:
        if isinstance(evt, StatusEvent):
            self.status_changed.emit(evt.text, evt.color)
        elif isinstance(evt, PlaylistChangedEvent):
            self.urls = list(evt.urls)
            self.file_list_changed.emit(list(evt.urls))
        elif isinstance(evt, LogLineEvent):
            self.log_line.emit(evt.text)
        elif isinstance(evt, PermissionRequiredEvent):
            self.permission_required.emit(evt.reason)
        elif isinstance(evt, GateStateEvent):
            self.gate_state = evt.state
            self.gate_state_changed.emit(evt.state)
        elif isinstance(evt, PreloadReport):
            self.preload_finished.emit(len(evt.loaded), len(evt.failed))
        elif isinstance(evt, AttemptResult):
            self.attempt_finished.emit(evt)
        elif isinstance(evt, VoiceFinishedEvent):
            self.voice_finished.emit(evt.voice_info.voice_id, evt.reason)
        else:
            self.log.debug(source="engine_adapter", message="unknown_event", metadata={"event": type(evt).__name__})
