from __future__ import annotations

import asyncio
from typing import Callable, Dict, Iterable, Optional

from engine.errors import DecodeError, EngineError, FetchError
from engine.fetch import Fetcher
from engine.messages.events import PreloadReport
from engine.track import DecodedBuffer
from log.log_manager import LogManager
from log.perf import perf_span

Decoder = Callable[[bytes, str], DecodedBuffer]


class BufferCache:
    """Fetch + decode sound urls into DecodedBuffers, memoized for the process lifetime.

    Concurrent get() calls for the same url share one in-flight load, so a url is
    fetched and decoded at most once. Failed loads are not memoized; the next get()
    retries. There is no eviction.
    """

    def __init__(self, fetch: Fetcher, decode: Decoder, *, log: Optional[LogManager] = None, offload_decode: bool = True) -> None:
        self._fetch = fetch
        self._decode = decode
        self.log = log or LogManager()
        # Decoding is CPU bound; by default it runs on the loop's executor.
        self._offload_decode = bool(offload_decode)
        self._buffers: Dict[str, DecodedBuffer] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        # Number of network/disk fetches actually issued (diagnostics/tests).
        self.fetch_count = 0

    def __len__(self) -> int:
        return len(self._buffers)

    def __contains__(self, url: object) -> bool:
        return url in self._buffers

    def cached(self, url: str) -> Optional[DecodedBuffer]:
        return self._buffers.get(url)

    def pending(self, url: str) -> bool:
        return url in self._inflight

    async def get(self, url: str) -> DecodedBuffer:
        buf = self._buffers.get(url)
        if buf is not None:
            return buf

        task = self._inflight.get(url)
        if task is None:
            task = asyncio.ensure_future(self._load(url))
            self._inflight[url] = task
            task.add_done_callback(lambda t, u=url: self._load_done(u, t))
        # A cancelled caller must not cancel the load other callers are waiting on.
        return await asyncio.shield(task)

    def cancel_pending(self) -> int:
        """Cancel every in-flight load (shutdown). Cached buffers are kept."""
        pending = list(self._inflight.values())
        for task in pending:
            task.cancel()
        if pending:
            self.log.info(source="buffer_cache", message="pending_loads_cancelled", metadata={"cancelled": len(pending)})
        return len(pending)

    def _load_done(self, url: str, task: asyncio.Future) -> None:
        if self._inflight.get(url) is task:
            del self._inflight[url]
        if not task.cancelled():
            # Mark the exception as retrieved even if every waiter went away.
            task.exception()

    async def _load(self, url: str) -> DecodedBuffer:
        self.fetch_count += 1
        self.log.debug(url=url, source="buffer_cache", message="fetch_started", metadata={})
        try:
            data = await self._fetch(url)
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e

        try:
            with perf_span(f"decode {url}"):
                if self._offload_decode:
                    loop = asyncio.get_running_loop()
                    buf = await loop.run_in_executor(None, self._decode, data, url)
                else:
                    buf = self._decode(data, url)
        except DecodeError:
            raise
        except Exception as e:
            raise DecodeError(url, f"{type(e).__name__}: {e}") from e

        self._buffers[url] = buf
        self.log.debug(url=url, source="buffer_cache", message="buffer_cached", metadata={"frames": buf.frames, "cached": len(self._buffers)})
        return buf

    async def preload_all(self, urls: Iterable[str]) -> PreloadReport:
        """Load every url concurrently; failures are collected per url, never raised."""
        unique = list(dict.fromkeys(urls))
        results = await asyncio.gather(*(self.get(u) for u in unique), return_exceptions=True)
        loaded = []
        failed: Dict[str, str] = {}
        for url, res in zip(unique, results):
            if isinstance(res, EngineError):
                failed[url] = str(res)
            elif isinstance(res, BaseException):
                failed[url] = f"{type(res).__name__}: {res}"
            else:
                loaded.append(url)
        report = PreloadReport(loaded=tuple(loaded), failed=failed)
        self.log.info(source="buffer_cache", message="preload_finished", metadata={"loaded": len(report.loaded), "failed": len(report.failed)})
        return report
