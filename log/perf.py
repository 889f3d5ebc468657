from __future__ import annotations

import os
import time
from contextlib import contextmanager
from functools import lru_cache


def env_truthy(name: str, *, default: bool = False) -> bool:
    v = os.environ.get(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


@lru_cache(maxsize=None)
def perf_enabled() -> bool:
    """Opt-in console perf printing.

    Enable by setting `IDLESOUNDS_PERF=1` in the environment.
    """

    return env_truthy("IDLESOUNDS_PERF", default=False)


def perf_print(msg: str) -> None:
    if perf_enabled():
        print(msg)


@contextmanager
def perf_span(label: str):
    """Print the wall time of the wrapped block when perf printing is enabled."""
    if not perf_enabled():
        yield
        return
    t0 = time.perf_counter()
    try:
        yield
    finally:
        perf_print(f"[PERF] {label} {(time.perf_counter() - t0) * 1000.0:.1f}ms")
