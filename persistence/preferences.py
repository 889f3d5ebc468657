import json
import os
import threading
from pathlib import Path
from typing import Any, Optional

from engine.tuning import (
    DEFAULT_AMBIENT_MAX_DELAY_S,
    DEFAULT_AMBIENT_MIN_DELAY_S,
    DEFAULT_CHAOS_INTERVAL_MS,
    DEFAULT_VOLUME,
    CadenceMode,
    SchedulerConfig,
)
from log.log_manager import LogManager

PREF_DEFAULTS: dict[str, Any] = {
    "volume": DEFAULT_VOLUME,
    "interval_ms": DEFAULT_CHAOS_INTERVAL_MS,
    "mode": CadenceMode.CHAOS.value,
    "ambient_min_s": DEFAULT_AMBIENT_MIN_DELAY_S,
    "ambient_max_s": DEFAULT_AMBIENT_MAX_DELAY_S,
    "shout_enabled": False,
    "shout_url": None,
}


class Preferences:
    """User preferences persisted as one JSON object.

    Writes go through a debounced threading.Timer so slider drags do not hit
    the disk on every tick; the file is replaced atomically. A corrupted file
    is moved aside as `<name>.corrupt` and defaults are used.
    """

    def __init__(
        self,
        file_path: str | os.PathLike[str],
        *,
        debounce_seconds: float = 0.5,
        log: Optional[LogManager] = None,
    ):
        self.file_path = Path(file_path)
        self.prefs: dict[str, Any] = {}
        self.log = log or LogManager()

        self._lock = threading.Lock()
        self._debounce_seconds = float(debounce_seconds)
        self._save_timer: Optional[threading.Timer] = None

        self.load()

    def load(self) -> None:
        with self._lock:
            if not self.file_path.exists():
                self.prefs = {}
                return

            try:
                with self.file_path.open("r", encoding="utf-8") as file:
                    loaded = json.load(file)
                self.prefs = loaded if isinstance(loaded, dict) else {}
            except json.JSONDecodeError:
                # Crash mid-write; keep the bad file for inspection and start clean.
                corrupt = self.file_path.with_suffix(self.file_path.suffix + ".corrupt")
                try:
                    os.replace(self.file_path, corrupt)
                except OSError as e:
                    self.log.warning(source="preferences", message="corrupt_move_failed", metadata={"path": str(self.file_path), "error": str(e)})
                self.log.warning(source="preferences", message="preferences_corrupt", metadata={"path": str(self.file_path), "moved_to": str(corrupt)})
                self.prefs = {}
            except OSError as e:
                self.log.error(source="preferences", message="preferences_load_failed", metadata={"path": str(self.file_path), "error": str(e)})
                self.prefs = {}

    # ------------------------------------------------------------------
    # get / set
    # ------------------------------------------------------------------
    def get_pref(self, key: str, default: Optional[Any] = None) -> Any:
        if default is None:
            default = PREF_DEFAULTS.get(key)
        with self._lock:
            return self.prefs.get(key, default)

    def set_pref(self, key: str, value: Any) -> None:
        with self._lock:
            if key in self.prefs and self.prefs[key] == value:
                return
            self.prefs[key] = value
        self.schedule_save()

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------
    def _as_float(self, key: str) -> float:
        try:
            return float(self.get_pref(key))
        except (TypeError, ValueError):
            return float(PREF_DEFAULTS[key])

    def _as_int(self, key: str) -> int:
        try:
            return int(self.get_pref(key))
        except (TypeError, ValueError):
            return int(PREF_DEFAULTS[key])

    def volume(self) -> float:
        return self._as_float("volume")

    def interval_ms(self) -> int:
        return self._as_int("interval_ms")

    def mode(self) -> CadenceMode:
        try:
            return CadenceMode(str(self.get_pref("mode")).lower())
        except ValueError:
            return CadenceMode.CHAOS

    def shout_enabled(self) -> bool:
        return bool(self.get_pref("shout_enabled"))

    def shout_url(self) -> Optional[str]:
        url = self.get_pref("shout_url")
        return url if isinstance(url, str) and url.strip() else None

    def scheduler_config(self, base: Optional[SchedulerConfig] = None) -> SchedulerConfig:
        """Saved cadence settings layered over `base`, clamped."""
        base = base or SchedulerConfig()
        return SchedulerConfig(
            mode=self.mode(),
            chaos_interval_ms=self.interval_ms(),
            ambient_min_delay_s=self._as_int("ambient_min_s"),
            ambient_max_delay_s=self._as_int("ambient_max_s"),
            max_concurrent_voices=base.max_concurrent_voices,
            selection_policy=base.selection_policy,
        ).normalized()

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------
    def schedule_save(self, *, debounce_seconds: Optional[float] = None) -> None:
        """Debounced save. Safe to call frequently."""
        with self._lock:
            delay = float(self._debounce_seconds if debounce_seconds is None else debounce_seconds)
            existing = self._save_timer
            self._save_timer = None
            if existing is not None:
                existing.cancel()

            if delay <= 0:
                self._save_unlocked()
                return

            timer = threading.Timer(delay, self._debounced_save)
            timer.daemon = True
            self._save_timer = timer
        timer.start()

    def _debounced_save(self) -> None:
        with self._lock:
            self._save_timer = None
            self._save_unlocked()

    @property
    def save_pending(self) -> bool:
        return self._save_timer is not None

    def flush(self) -> None:
        """Write any pending debounced save now."""
        with self._lock:
            timer = self._save_timer
            self._save_timer = None
            if timer is not None:
                timer.cancel()
            self._save_unlocked()

    def _save_unlocked(self) -> None:
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.file_path.with_suffix(self.file_path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as file:
                json.dump(self.prefs, file, indent=4, ensure_ascii=False)
                file.flush()
                os.fsync(file.fileno())
            # Atomic replace on Windows and POSIX.
            os.replace(tmp_path, self.file_path)
        except OSError as e:
            self.log.error(source="preferences", message="preferences_save_failed", metadata={"path": str(self.file_path), "error": str(e)})
