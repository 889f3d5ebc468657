from __future__ import annotations

import random
from typing import Iterable, List, Optional, Tuple

from engine.buffer_cache import BufferCache, Decoder
from engine.decoder import decode_bytes
from engine.errors import FetchError, PlaybackPermissionError
from engine.fetch import Fetcher, HttpFetcher
from engine.manifest import load_manifest
from engine.messages.events import AttemptOutcome, AttemptResult, GateStateEvent, PreloadReport
from engine.observer import EngineObserver
from engine.output import OutputBackend, OutputMixer
from engine.playback_gate import GateState, PlaybackGate
from engine.scene import SceneHost, SceneState, Unsubscribe
from engine.scheduler import Scheduler
from engine.selector import Selector
from engine.timer import CancellableTimer
from engine.tuning import DEFAULT_VOLUME, CadenceMode, EngineTuning, SchedulerConfig, clamp_volume, load_engine_tuning
from engine.voice_pool import VoicePool
from log.log_manager import LogManager
from log.log_record import LogRecord

STATUS_SCENE_OPEN = ("scene open", "#93c5fd")
STATUS_NO_SCENE = ("no scene", "#a7f3d0")


class AudioEngine:
    """Composition root of the playback core.

    Owns one BufferCache, VoicePool, Selector, Scheduler and PlaybackGate and
    exposes the operations the UI and host collaborators call. All methods
    must be called from the engine's event loop thread.
    """

    def __init__(
        self,
        *,
        config: Optional[SchedulerConfig] = None,
        tuning: Optional[EngineTuning] = None,
        observer: Optional[EngineObserver] = None,
        fetch: Optional[Fetcher] = None,
        decode: Optional[Decoder] = None,
        output: Optional[OutputBackend] = None,
        timer: Optional[CancellableTimer] = None,
        rng: Optional[random.Random] = None,
        log: Optional[LogManager] = None,
        volume: float = DEFAULT_VOLUME,
        offload_decode: bool = True,
    ) -> None:
        self.tuning = tuning or load_engine_tuning()
        self.log = log or LogManager()
        self.observer = observer or EngineObserver()

        self._owned_fetcher: Optional[HttpFetcher] = None
        if fetch is None:
            self._owned_fetcher = HttpFetcher(timeout_s=self.tuning.fetch_timeout_s)
            fetch = self._owned_fetcher
        self._fetch = fetch

        if decode is None:
            sample_rate, channels = self.tuning.sample_rate, self.tuning.channels

            def decode(data: bytes, url: str):
                return decode_bytes(data, url, sample_rate=sample_rate, channels=channels)

        self.output = output or OutputMixer(
            sample_rate=self.tuning.sample_rate,
            channels=self.tuning.channels,
            block_frames=self.tuning.block_frames,
            device=self.tuning.output_device,
            log=self.log,
        )

        cfg = config or SchedulerConfig(max_concurrent_voices=self.tuning.max_concurrent_voices)
        self.cache = BufferCache(fetch, decode, log=self.log, offload_decode=offload_decode)
        self.pool = VoicePool(self.output, limit=cfg.max_concurrent_voices, log=self.log)
        self.selector = Selector(cfg.selection_policy, rng=rng)
        self.scheduler = Scheduler(
            cache=self.cache,
            pool=self.pool,
            selector=self.selector,
            config=cfg,
            timer=timer,
            is_armed=lambda: self.gate.armed,
            get_playlist=lambda: self._playlist,
            get_gain=lambda: self._volume,
            on_result=self._on_attempt_result,
            rng=rng,
            log=self.log,
        )
        self.gate = PlaybackGate(self.scheduler, self.pool, log=self.log)
        self.gate.add_listener(self._on_gate_state)
        self.pool.add_finished_listener(self.observer.on_voice_finished)

        self._volume = clamp_volume(volume)
        self._manifest_urls: List[str] = []
        self._extra_url: Optional[str] = None
        self._extra_enabled = False
        self._playlist: Tuple[str, ...] = ()

        self._scene_host: Optional[SceneHost] = None
        self._unsubscribe_scene: Optional[Unsubscribe] = None
        # Bumped on every scene notification; lets a slow initial query detect it is stale.
        self._scene_events = 0
        self._shutdown = False
        self._remove_log_sink = self.log.add_sink(self._forward_log)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def playlist(self) -> Tuple[str, ...]:
        return self._playlist

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def state(self) -> GateState:
        return self.gate.state

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown

    # ------------------------------------------------------------------
    # Playlist
    # ------------------------------------------------------------------
    def set_playlist(self, urls: Iterable[str]) -> None:
        self._manifest_urls = list(dict.fromkeys(u for u in urls if u))
        self._rebuild_playlist()

    def set_extra_url(self, url: Optional[str], enabled: bool) -> None:
        """The "shout" toggle: always append `url` to the playlist while enabled."""
        self._extra_url = url or None
        self._extra_enabled = bool(enabled)
        self._rebuild_playlist()

    def _rebuild_playlist(self) -> None:
        urls = list(self._manifest_urls)
        if self._extra_enabled and self._extra_url and self._extra_url not in urls:
            urls.append(self._extra_url)
        playlist = tuple(urls)
        if playlist == self._playlist:
            return
        self._playlist = playlist
        # Indices of the previous playlist mean nothing now.
        self.scheduler.reset_selection()
        self.log.info(source="engine", message="playlist_loaded", metadata={"count": len(playlist)})
        self.observer.on_playlist(playlist)

    async def load_manifest(self, source: str) -> List[str]:
        try:
            urls = await load_manifest(source, self._fetch)
        except FetchError as e:
            self.log.error(url=source, source="engine", message="manifest_load_failed", metadata={"error": str(e)})
            raise
        self.set_playlist(urls)
        return urls

    # ------------------------------------------------------------------
    # Runtime settings
    # ------------------------------------------------------------------
    def set_volume(self, v: float) -> None:
        self._volume = clamp_volume(v)
        self.pool.set_gain(self._volume)

    def set_scheduler_config(self, cfg: SchedulerConfig) -> None:
        self.scheduler.update_config(cfg)
        self.log.info(source="engine", message="scheduler_config_set", metadata={
            "mode": self.scheduler.config.mode.value,
            "interval_ms": self.scheduler.config.chaos_interval_ms,
            "max_voices": self.scheduler.config.max_concurrent_voices,
        })

    def set_interval(self, interval_ms: int) -> None:
        self.set_scheduler_config(self.scheduler.config.with_interval(interval_ms))

    def set_mode(self, mode: CadenceMode) -> None:
        self.set_scheduler_config(self.scheduler.config.with_mode(mode))

    # ------------------------------------------------------------------
    # Arming and scene
    # ------------------------------------------------------------------
    async def arm_from_user_gesture(self) -> GateState:
        """Unlock audio output and arm the gate. Safe to call again to retry a failed unlock."""
        if self._shutdown:
            return self.gate.state

        if self.gate.scene is SceneState.UNKNOWN and self._scene_host is not None:
            seen = self._scene_events
            try:
                ready = await self._scene_host.is_scene_ready()
            except Exception as e:
                self.log.warning(source="engine", message="scene_query_failed", metadata={"error": f"{type(e).__name__}: {e}"})
            else:
                if self._scene_events == seen and not self._shutdown:
                    self.notify_scene_state(ready)
            if self._shutdown:
                return self.gate.state

        self._unlock_output()
        if not self.gate.armed:
            self.log.info(source="engine", message="audio_permission_granted", metadata={})
        return self.gate.arm()

    def _unlock_output(self) -> bool:
        try:
            self.output.resume()
        except PlaybackPermissionError as e:
            self.log.warning(source="engine", message="audio_unlock_failed", metadata={"error": str(e)})
            self.observer.on_permission_required(str(e))
            return False
        return True

    def notify_scene_state(self, active: bool) -> None:
        if self._shutdown:
            return
        self._scene_events += 1
        self.gate.scene_changed(bool(active))
        self.observer.on_status(*(STATUS_SCENE_OPEN if active else STATUS_NO_SCENE))

    async def attach_scene_host(self, host: SceneHost) -> None:
        """Subscribe to host scene changes and apply its current state."""
        self.detach_scene_host()
        self._scene_host = host
        self._unsubscribe_scene = host.on_scene_ready_changed(self.notify_scene_state)
        seen = self._scene_events
        try:
            ready = await host.is_scene_ready()
        except Exception as e:
            self.log.warning(source="engine", message="scene_query_failed", metadata={"error": f"{type(e).__name__}: {e}"})
            return
        # A change delivered while the query was outstanding is newer than the query answer.
        if self._scene_events == seen:
            self.notify_scene_state(ready)

    def detach_scene_host(self) -> None:
        unsubscribe = self._unsubscribe_scene
        self._unsubscribe_scene = None
        self._scene_host = None
        if unsubscribe is not None:
            unsubscribe()

    # ------------------------------------------------------------------
    # UI actions
    # ------------------------------------------------------------------
    async def preload(self) -> PreloadReport:
        urls = list(self._playlist)
        self.log.info(source="engine", message="preload_started", metadata={"count": len(urls)})
        report = await self.cache.preload_all(urls)
        for url, error in report.failed.items():
            self.log.warning(url=url, source="engine", message="preload_failed", metadata={"error": error})
        self.observer.on_preload(report)
        return report

    async def trigger_test_playback(self) -> AttemptResult:
        return await self.scheduler.attempt_once()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    def shutdown(self) -> None:
        if self._shutdown:
            return
        self._shutdown = True
        self.detach_scene_host()
        self.scheduler.close()
        self.cache.cancel_pending()
        self.pool.stop_all()
        self.output.close()
        self.log.info(source="engine", message="engine_shutdown", metadata={})
        self._remove_log_sink()

    async def aclose(self) -> None:
        self.shutdown()
        await self.scheduler.wait_idle()
        if self._owned_fetcher is not None:
            await self._owned_fetcher.aclose()

    # ------------------------------------------------------------------
    # Observer plumbing
    # ------------------------------------------------------------------
    def _on_attempt_result(self, result: AttemptResult) -> None:
        self.observer.on_attempt(result)
        if result.outcome is AttemptOutcome.PERMISSION:
            self.observer.on_permission_required(result.error)

    def _on_gate_state(self, evt: GateStateEvent) -> None:
        self.observer.on_gate_state(evt)

    def _forward_log(self, rec: LogRecord) -> None:
        if rec.level == "debug":
            return
        text = f"[{rec.tod:%H:%M:%S}] {rec.message}"
        if rec.url:
            text += f": {rec.url}"
        if rec.metadata:
            text += " " + ", ".join(f"{k}={v}" for k, v in rec.metadata.items())
        self.observer.on_log_line(text)
