from __future__ import annotations

import asyncio
import random
from typing import Callable, Optional, Sequence, Set

from engine.buffer_cache import BufferCache
from engine.cue import Voice
from engine.errors import CapacityExceeded, DecodeError, FetchError, PlaybackPermissionError
from engine.messages.events import AttemptOutcome, AttemptResult
from engine.selector import Selector
from engine.timer import CancellableTimer
from engine.tuning import MIN_AMBIENT_RETRY_MS, CadenceMode, SchedulerConfig
from engine.voice_pool import VoicePool
from log.log_manager import LogManager

ResultCallback = Callable[[AttemptResult], None]


class Scheduler:
    """Drive playback attempts at the configured cadence.

    CHAOS: one attempt on start, then one every `chaos_interval_ms`. The timer
    is re-armed at the top of each tick from the current config, so an interval
    change lands on the next tick. Attempts overlap freely.

    AMBIENT: one attempt on start, then exactly one follow-up per attempt after
    a random [min, max] second gap. When the attempt started a voice the gap is
    counted from that voice's natural end; any other outcome re-arms at once,
    but never sooner than MIN_AMBIENT_RETRY_MS.

    Every start() opens a new generation. Timer callbacks, voice-end hooks and
    in-flight attempts carry the generation they were launched for and do
    nothing once it is stale, so there is never more than one live cadence and
    no voice is created after stop().
    """

    def __init__(
        self,
        *,
        cache: BufferCache,
        pool: VoicePool,
        selector: Selector,
        config: Optional[SchedulerConfig] = None,
        timer: Optional[CancellableTimer] = None,
        is_armed: Callable[[], bool] = lambda: True,
        get_playlist: Callable[[], Sequence[str]] = lambda: (),
        get_gain: Callable[[], float] = lambda: 1.0,
        on_result: Optional[ResultCallback] = None,
        rng: Optional[random.Random] = None,
        log: Optional[LogManager] = None,
    ) -> None:
        self._cache = cache
        self._pool = pool
        self._selector = selector
        self._timer = timer or CancellableTimer()
        self._is_armed = is_armed
        self._get_playlist = get_playlist
        self._get_gain = get_gain
        self._on_result = on_result
        self._rng = rng or random.Random()
        self.log = log or LogManager()

        self._config = SchedulerConfig()
        self._running = False
        self._closed = False
        self._generation = 0
        self._last_index = -1
        self._tasks: Set[asyncio.Task] = set()
        self.config = config or SchedulerConfig()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @config.setter
    def config(self, cfg: SchedulerConfig) -> None:
        self._config = cfg.normalized()
        self._pool.limit = self._config.max_concurrent_voices
        self._selector.policy = self._config.selection_policy

    def update_config(self, cfg: SchedulerConfig) -> None:
        """Apply a new config. A mode switch restarts a running cadence; anything else waits for the next tick."""
        old_mode = self._config.mode
        self.config = cfg
        if self._running and self._config.mode is not old_mode:
            self.log.info(source="scheduler", message="mode_changed_restart", metadata={"mode": self._config.mode.value})
            self.start()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_index(self) -> int:
        return self._last_index

    def reset_selection(self) -> None:
        self._last_index = -1

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._closed:
            return
        # Cancel any pending tick before opening the new cycle.
        self._timer.cancel()
        self._generation += 1
        self._running = True
        gen = self._generation
        cfg = self._config
        if cfg.mode is CadenceMode.CHAOS:
            self.log.info(source="scheduler", message="chaos_started", metadata={"interval_ms": cfg.chaos_interval_ms})
            self._arm_chaos(gen)
        else:
            self.log.info(source="scheduler", message="ambient_started", metadata={"min_delay_s": cfg.ambient_min_delay_s, "max_delay_s": cfg.ambient_max_delay_s})
        self._spawn(gen, ambient=cfg.mode is CadenceMode.AMBIENT)

    def stop(self) -> None:
        was_running = self._running
        self._timer.cancel()
        self._running = False
        # Invalidate timer closures, voice-end hooks and attempts still awaiting a buffer.
        self._generation += 1
        if was_running:
            self.log.info(source="scheduler", message="scheduler_stopped", metadata={"in_flight": len(self._tasks)})

    def close(self) -> None:
        """Stop for good and cancel attempts still waiting on a fetch or decode."""
        self.stop()
        self._closed = True
        for task in list(self._tasks):
            task.cancel()

    async def wait_idle(self) -> None:
        """Wait until every launched attempt has resolved."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _is_current(self, gen: int) -> bool:
        return self._running and gen == self._generation

    # ------------------------------------------------------------------
    # Cadences
    # ------------------------------------------------------------------
    def _arm_chaos(self, gen: int) -> None:
        self._timer.arm(self._config.chaos_interval_ms / 1000.0, lambda: self._chaos_tick(gen))

    def _chaos_tick(self, gen: int) -> None:
        if not self._is_current(gen):
            return
        self._arm_chaos(gen)
        self._spawn(gen, ambient=False)

    def _ambient_delay_s(self) -> float:
        cfg = self._config
        delay_ms = self._rng.randint(cfg.ambient_min_delay_s * 1000, cfg.ambient_max_delay_s * 1000)
        return delay_ms / 1000.0

    def _ambient_rearm(self, gen: int, *, retry: bool = False) -> None:
        if not self._is_current(gen):
            return
        delay_s = self._ambient_delay_s()
        if retry:
            delay_s = max(delay_s, MIN_AMBIENT_RETRY_MS / 1000.0)
        self.log.debug(source="scheduler", message="ambient_rearmed", metadata={"delay_s": delay_s})
        self._timer.arm(delay_s, lambda: self._ambient_tick(gen))

    def _ambient_tick(self, gen: int) -> None:
        if not self._is_current(gen):
            return
        self._spawn(gen, ambient=True)

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------
    def attempt_once(self) -> "asyncio.Task[AttemptResult]":
        """Run one standalone attempt (UI test button). Not tied to any cadence cycle."""
        return self._spawn(None, ambient=False)

    def _spawn(self, gen: Optional[int], *, ambient: bool) -> "asyncio.Task[AttemptResult]":
        task = asyncio.ensure_future(self._run_attempt(gen, ambient=ambient))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_attempt(self, gen: Optional[int], *, ambient: bool) -> AttemptResult:
        on_end: Optional[Callable[[Voice], None]] = None
        if ambient and gen is not None:
            on_end = lambda _voice: self._ambient_rearm(gen)

        result: Optional[AttemptResult] = None
        try:
            result = await self.attempt(gen, on_end=on_end)
        except Exception as e:
            self.log.error(source="scheduler", message="attempt_crashed", metadata={"error": f"{type(e).__name__}: {e}"})
            result = AttemptResult(outcome=AttemptOutcome.FAILED, error=f"{type(e).__name__}: {e}", active_voices=self._pool.size(), manual=gen is None)
        finally:
            # A voice that started re-arms from its end hook; every other outcome re-arms here.
            if ambient and gen is not None and (result is None or not result.played):
                self._ambient_rearm(gen, retry=True)

        self._report(result)
        return result

    def _still_wanted(self, gen: Optional[int]) -> bool:
        if gen is None:
            return not self._closed
        return self._is_current(gen)

    async def attempt(self, gen: Optional[int], *, on_end: Optional[Callable[[Voice], None]] = None) -> AttemptResult:
        manual = gen is None
        if not self._is_armed():
            return AttemptResult(outcome=AttemptOutcome.SKIPPED_UNARMED, manual=manual)
        playlist = list(self._get_playlist())
        if not playlist:
            return AttemptResult(outcome=AttemptOutcome.SKIPPED_EMPTY, manual=manual)

        limit = self._config.max_concurrent_voices
        if not self._pool.enforce_cap(limit):
            return AttemptResult(outcome=AttemptOutcome.CAPACITY, active_voices=self._pool.size(), manual=manual)

        idx = self._selector.pick_next(playlist, self._last_index)
        if idx < 0:
            return AttemptResult(outcome=AttemptOutcome.SKIPPED_EMPTY, manual=manual)
        self._last_index = idx
        url = playlist[idx]

        try:
            buf = await self._cache.get(url)
            if not self._still_wanted(gen):
                return AttemptResult(outcome=AttemptOutcome.CANCELLED, url=url, index=idx, active_voices=self._pool.size(), manual=manual)
            # Other attempts may have filled the pool while this one awaited its buffer.
            if not self._pool.enforce_cap(limit):
                return AttemptResult(outcome=AttemptOutcome.CAPACITY, url=url, index=idx, active_voices=self._pool.size(), manual=manual)
            handle = self._pool.play(buf, self._get_gain(), on_end=on_end)
        except FetchError as e:
            return AttemptResult(outcome=AttemptOutcome.FETCH_ERROR, url=url, index=idx, error=str(e), active_voices=self._pool.size(), manual=manual)
        except DecodeError as e:
            return AttemptResult(outcome=AttemptOutcome.DECODE_ERROR, url=url, index=idx, error=str(e), active_voices=self._pool.size(), manual=manual)
        except PlaybackPermissionError as e:
            return AttemptResult(outcome=AttemptOutcome.PERMISSION, url=url, index=idx, error=str(e), active_voices=self._pool.size(), manual=manual)
        except CapacityExceeded:
            return AttemptResult(outcome=AttemptOutcome.CAPACITY, url=url, index=idx, active_voices=self._pool.size(), manual=manual)

        return AttemptResult(outcome=AttemptOutcome.PLAYED, url=url, index=idx, voice_id=handle.voice_id, active_voices=self._pool.size(), manual=manual)

    def _report(self, result: AttemptResult) -> None:
        outcome = result.outcome
        meta = {"outcome": outcome.value, "active": result.active_voices, "manual": result.manual}
        if outcome is AttemptOutcome.PLAYED:
            self.log.info(voice_id=result.voice_id or "", url=result.url or "", source="scheduler", message="played", metadata=meta)
        elif result.is_error:
            meta["error"] = result.error
            self.log.warning(url=result.url or "", source="scheduler", message="attempt_failed", metadata=meta)
        else:
            self.log.debug(url=result.url or "", source="scheduler", message="attempt_skipped", metadata=meta)

        if self._on_result is not None:
            try:
                self._on_result(result)
            except Exception as e:
                self.log.error(source="scheduler", message="result_observer_failed", metadata={"error": f"{type(e).__name__}: {e}"})
