from __future__ import annotations

import asyncio
from typing import Callable, Optional


class CancellableTimer:
    """One pending callback on the event loop.

    arm() replaces whatever was pending, so a timer never has two callbacks
    queued. Both cadences (Chaos and Ambient) re-arm the same timer from
    inside its own callback.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, delay_s: float, callback: Callable[[], None]) -> None:
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(max(0.0, float(delay_s)), self._fire, callback)

    def _fire(self, callback: Callable[[], None]) -> None:
        self._handle = None
        callback()

    def cancel(self) -> None:
        handle = self._handle
        self._handle = None
        if handle is not None:
            handle.cancel()
