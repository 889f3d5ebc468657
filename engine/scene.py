"""
Scene presence as reported by the host application.

The host exposes an async "is a scene ready?" query and a change
subscription. Sound plays only while no scene is active.
"""
from __future__ import annotations

import threading
from enum import Enum
from typing import Callable, List, Optional, Protocol

SceneCallback = Callable[[bool], None]
Unsubscribe = Callable[[], None]


class SceneState(str, Enum):
    UNKNOWN = "unknown"
    ACTIVE = "active"
    INACTIVE = "inactive"

    @classmethod
    def from_ready(cls, ready: Optional[bool]) -> "SceneState":
        if ready is None:
            return cls.UNKNOWN
        return cls.ACTIVE if ready else cls.INACTIVE


class SceneHost(Protocol):
    async def is_scene_ready(self) -> bool: ...

    def on_scene_ready_changed(self, callback: SceneCallback) -> Unsubscribe: ...


class StandaloneSceneHost:
    """Running outside any host: a scene is never open, so the engine plays once armed."""

    async def is_scene_ready(self) -> bool:
        return False

    def on_scene_ready_changed(self, callback: SceneCallback) -> Unsubscribe:
        return lambda: None


class ManualSceneHost:
    """Scene host driven by code (control window toggle, tests). Safe to use from several threads."""

    def __init__(self, ready: bool = False) -> None:
        self._lock = threading.Lock()
        self._ready = bool(ready)
        self._callbacks: List[SceneCallback] = []

    @property
    def ready(self) -> bool:
        with self._lock:
            return self._ready

    async def is_scene_ready(self) -> bool:
        return self.ready

    def set_ready(self, ready: bool) -> None:
        ready = bool(ready)
        with self._lock:
            if ready == self._ready:
                return
            self._ready = ready
            callbacks = list(self._callbacks)
        # Called outside the lock so a callback may subscribe or unsubscribe.
        for cb in callbacks:
            cb(ready)

    def on_scene_ready_changed(self, callback: SceneCallback) -> Unsubscribe:
        with self._lock:
            self._callbacks.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                try:
                    self._callbacks.remove(callback)
                except ValueError:
                    pass
        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._callbacks)
