"""
AudioService: runs the AudioEngine on its own asyncio loop thread, isolated from Qt.

The GUI never touches the engine directly:
- commands: GUI thread -> submit(cmd) -> run_coroutine_threadsafe -> handle_command()
- events:   engine observer -> evt_q (queue.Queue) -> drained by the GUI's QTimer

Audio keeps its cadence even while the Qt thread is blocked (dialogs, resizes),
because timers, fetches and voice bookkeeping all live on the service loop.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from engine.audio_engine import AudioEngine
from engine.errors import EngineError
from engine.messages.commands import (
    ArmCommand,
    LoadManifestCommand,
    PreloadCommand,
    SceneStateCommand,
    SetExtraUrlCommand,
    SetIntervalCommand,
    SetModeCommand,
    SetPlaylistCommand,
    SetSchedulerConfigCommand,
    SetVolumeCommand,
    TriggerTestPlaybackCommand,
)
from engine.observer import QueueObserver
from engine.scene import SceneCallback, SceneHost, StandaloneSceneHost, Unsubscribe
from engine.tuning import DEFAULT_VOLUME, SchedulerConfig
from log.log_manager import LogManager

EngineFactory = Callable[..., AudioEngine]


@dataclass(frozen=True, slots=True)
class AudioServiceConfig:
    """Initial engine state, usually built from saved preferences."""
    manifest_source: Optional[str] = None
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    volume: float = DEFAULT_VOLUME
    extra_url: Optional[str] = None
    extra_enabled: bool = False
    startup_timeout_s: float = 5.0
    shutdown_timeout_s: float = 2.0


class LoopSceneHost:
    """Wrap a SceneHost so change callbacks always run on the engine loop.

    Hosts may report changes from any thread (a Qt toggle, a host SDK thread).
    """

    def __init__(self, host: SceneHost, loop: asyncio.AbstractEventLoop) -> None:
        self._host = host
        self._loop = loop

    async def is_scene_ready(self) -> bool:
        return await self._host.is_scene_ready()

    def on_scene_ready_changed(self, callback: SceneCallback) -> Unsubscribe:
        loop = self._loop

        def _hop(ready: bool) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(callback, ready)
        return self._host.on_scene_ready_changed(_hop)


class AudioService:
    def __init__(
        self,
        config: Optional[AudioServiceConfig] = None,
        *,
        evt_q: "queue.Queue[object] | None" = None,
        scene_host: Optional[SceneHost] = None,
        engine_factory: Optional[EngineFactory] = None,
        log: Optional[LogManager] = None,
    ) -> None:
        self.config = config or AudioServiceConfig()
        self.evt_q: "queue.Queue[object]" = evt_q if evt_q is not None else queue.Queue()
        self.scene_host: SceneHost = scene_host or StandaloneSceneHost()
        self._engine_factory = engine_factory or AudioEngine
        self.log = log or LogManager()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._engine: Optional[AudioEngine] = None
        self._startup_error: Optional[BaseException] = None

    @property
    def engine(self) -> Optional[AudioEngine]:
        return self._engine

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="idle-sounds-engine", daemon=True)
        self._thread.start()
        if not self._ready.wait(timeout=self.config.startup_timeout_s):
            self.log.warning(source="audio_service", message="startup_timeout", metadata={"timeout_s": self.config.startup_timeout_s})
        if self._startup_error is not None:
            raise RuntimeError(f"audio service failed to start: {self._startup_error}") from self._startup_error

    def stop(self) -> None:
        loop = self._loop
        thread = self._thread
        if loop is None or thread is None:
            return
        if not loop.is_closed():
            loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=self.config.shutdown_timeout_s)
        if thread.is_alive():
            self.log.warning(source="audio_service", message="shutdown_timeout", metadata={"timeout_s": self.config.shutdown_timeout_s})
        self._thread = None

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        try:
            try:
                self._engine = self._engine_factory(observer=QueueObserver(self.evt_q), log=self.log)
                loop.run_until_complete(self._startup(self._engine))
            except Exception as e:
                self._startup_error = e
                self.log.error(source="audio_service", message="startup_failed", metadata={"error": f"{type(e).__name__}: {e}"})
                return
            finally:
                self._ready.set()

            loop.run_forever()
            loop.run_until_complete(self._engine.aclose())
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            self.log.info(source="audio_service", message="service_stopped", metadata={})

    async def _startup(self, engine: AudioEngine) -> None:
        cfg = self.config
        engine.set_volume(cfg.volume)
        engine.set_scheduler_config(cfg.scheduler)
        engine.set_extra_url(cfg.extra_url, cfg.extra_enabled)
        if cfg.manifest_source:
            try:
                await engine.load_manifest(cfg.manifest_source)
            except EngineError:
                # Already logged by the engine; the app still runs with an empty playlist.
                pass
        assert self._loop is not None
        await engine.attach_scene_host(LoopSceneHost(self.scene_host, self._loop))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def submit(self, cmd: object) -> "concurrent.futures.Future[Any]":
        """Queue a command for the engine loop. Safe from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed() or not self._ready.is_set():
            raise RuntimeError("audio service is not running")
        return asyncio.run_coroutine_threadsafe(self.handle_command(cmd), loop)

    async def handle_command(self, cmd: object) -> Any:
        engine = self._engine
        if engine is None or engine.is_shut_down:
            return None
        try:
            if isinstance(cmd, ArmCommand):
                return await engine.arm_from_user_gesture()
            if isinstance(cmd, PreloadCommand):
                return await engine.preload()
            if isinstance(cmd, TriggerTestPlaybackCommand):
                return await engine.trigger_test_playback()
            if isinstance(cmd, SetVolumeCommand):
                return engine.set_volume(cmd.volume)
            if isinstance(cmd, SetPlaylistCommand):
                return engine.set_playlist(cmd.urls)
            if isinstance(cmd, LoadManifestCommand):
                return await engine.load_manifest(cmd.source)
            if isinstance(cmd, SetExtraUrlCommand):
                return engine.set_extra_url(cmd.url, cmd.enabled)
            if isinstance(cmd, SetSchedulerConfigCommand):
                return engine.set_scheduler_config(cmd.config)
            if isinstance(cmd, SetIntervalCommand):
                return engine.set_interval(cmd.interval_ms)
            if isinstance(cmd, SetModeCommand):
                return engine.set_mode(cmd.mode)
            if isinstance(cmd, SceneStateCommand):
                return engine.notify_scene_state(cmd.active)
        except EngineError as e:
            self.log.error(source="audio_service", message="command_failed", metadata={"command": type(cmd).__name__, "error": str(e)})
            return None

        self.log.warning(source="audio_service", message="unknown_command", metadata={"command": type(cmd).__name__})
        return None
