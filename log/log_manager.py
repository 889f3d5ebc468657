from __future__ import annotations
from datetime import datetime
import os
from typing import Any, Callable, Dict, List, Optional
from log.log_record import LogRecord

LogSink = Callable[[LogRecord], None]


class LogManager:
    def __init__(self, *, echo: Optional[bool] = None):
        self._debug_enabled = self._env_truthy("IDLESOUNDS_LOG_DEBUG", default=False)
        # Console echo can be silenced for tests/embedding via IDLESOUNDS_LOG_QUIET.
        self._echo = (not self._env_truthy("IDLESOUNDS_LOG_QUIET", default=False)) if echo is None else bool(echo)
        self._sinks: List[LogSink] = []

    @staticmethod
    def _env_truthy(name: str, *, default: bool = False) -> bool:
        v = os.environ.get(name)
        if v is None:
            return default
        return v.strip().lower() in ("1", "true", "yes", "on")

    @property
    def debug_enabled(self) -> bool:
        return self._debug_enabled

    def add_sink(self, sink: LogSink) -> Callable[[], None]:
        """Register a listener for every emitted record. Returns a remover."""
        self._sinks.append(sink)

        def _remove() -> None:
            try:
                self._sinks.remove(sink)
            except ValueError:
                pass
        return _remove

    def debug(self, *, voice_id: str = "", url: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        if not self._debug_enabled:
            return
        self._emit("debug", voice_id=voice_id, url=url, source=source, message=message, metadata=metadata)

    def info(self, *, voice_id: str = "", url: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._emit("info", voice_id=voice_id, url=url, source=source, message=message, metadata=metadata)

    def warning(self, *, voice_id: str = "", url: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        # Warnings are always printed.
        self._emit("warning", voice_id=voice_id, url=url, source=source, message=message, metadata=metadata)

    def error(self, *, voice_id: str = "", url: str = "", source: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        # Errors are always printed.
        self._emit("error", voice_id=voice_id, url=url, source=source, message=message, metadata=metadata)

    def _emit(self, level: str, *, voice_id: str, url: str, source: str, message: str, metadata: Optional[Dict[str, Any]]) -> None:
        rec = LogRecord(level=level, voice_id=voice_id or "", url=url or "", tod=datetime.now(), source=source, message=message, metadata=dict(metadata or {}))
        if self._echo or level in ("warning", "error"):
            print(rec.format_line())
        for sink in list(self._sinks):
            try:
                sink(rec)
            except Exception as e:
                # A broken sink must never take the engine down with it.
                print(f"[log] sink {sink!r} failed: {e}")
