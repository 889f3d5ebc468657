from __future__ import annotations

from enum import Enum
from typing import Callable, List, Optional

from engine.messages.events import GateStateEvent
from engine.scene import SceneState
from engine.scheduler import Scheduler
from engine.voice_pool import VoicePool
from log.log_manager import LogManager


class GateState(str, Enum):
    UNARMED = "unarmed"
    ARMED_SILENT = "armed_silent"
    ARMED_ACTIVE = "armed_active"


class PlaybackGate:
    """Reconcile "user armed audio" with "host scene active".

    UNARMED       armed=False, any scene        scheduler stopped
    ARMED_SILENT  armed=True, scene ACTIVE       scheduler stopped, voices stopped
                  (or still UNKNOWN)
    ARMED_ACTIVE  armed=True, scene INACTIVE     scheduler running

    Every method resolves all side effects before returning, so events are
    handled strictly one after another. Re-entering the current state is a
    no-op.
    """

    def __init__(self, scheduler: Scheduler, pool: VoicePool, *, log: Optional[LogManager] = None) -> None:
        self._scheduler = scheduler
        self._pool = pool
        self.log = log or LogManager()
        self._armed = False
        self._scene = SceneState.UNKNOWN
        self._state = GateState.UNARMED
        self._listeners: List[Callable[[GateStateEvent], None]] = []

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def scene(self) -> SceneState:
        return self._scene

    @property
    def state(self) -> GateState:
        return self._state

    def add_listener(self, listener: Callable[[GateStateEvent], None]) -> None:
        self._listeners.append(listener)

    def arm(self) -> GateState:
        """User gesture. Fires once per session; later calls change nothing."""
        if self._armed:
            return self._state
        self._armed = True
        self.log.info(source="gate", message="armed", metadata={"scene": self._scene.value})
        self._reconcile()
        return self._state

    def scene_changed(self, is_active: bool) -> GateState:
        self._scene = SceneState.from_ready(bool(is_active))
        if self._armed:
            self._reconcile()
        return self._state

    def _target(self) -> GateState:
        if not self._armed:
            return GateState.UNARMED
        if self._scene is SceneState.INACTIVE:
            return GateState.ARMED_ACTIVE
        return GateState.ARMED_SILENT

    def _reconcile(self) -> None:
        target = self._target()
        if target is self._state:
            return
        previous = self._state
        self._state = target

        if target is GateState.ARMED_ACTIVE:
            # Tear down any previous cycle before starting, so only one cadence lives.
            self._scheduler.stop()
            self._scheduler.start()
        else:
            self._scheduler.stop()
            if target is GateState.ARMED_SILENT:
                self._pool.stop_all()

        self.log.info(source="gate", message="state_changed", metadata={"from": previous.value, "to": target.value, "scene": self._scene.value})
        evt = GateStateEvent(state=target.value, previous=previous.value, scene=self._scene.value)
        for listener in list(self._listeners):
            listener(evt)
