from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional
from urllib.parse import unquote, urlparse

import httpx

from engine.errors import FetchError
from engine.tuning import DEFAULT_FETCH_TIMEOUT_S

# Any async callable url -> bytes can stand in for the fetcher (tests use a dict-backed one).
Fetcher = Callable[[str], Awaitable[bytes]]


def is_remote(url: str) -> bool:
    return urlparse(url).scheme in ("http", "https")


def local_path(url: str) -> Path:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(url)


class HttpFetcher:
    """Fetch sound resources over HTTP(S) or from the local filesystem."""

    def __init__(self, *, timeout_s: float = DEFAULT_FETCH_TIMEOUT_S, client: Optional[httpx.AsyncClient] = None) -> None:
        self._timeout_s = float(timeout_s)
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s, follow_redirects=True)
        return self._client

    async def __call__(self, url: str) -> bytes:
        if is_remote(url):
            return await self._fetch_http(url)
        return await self._read_local(url)

    async def _fetch_http(self, url: str) -> bytes:
        try:
            resp = await self._get_client().get(url, headers={"Cache-Control": "no-store"})
        except httpx.HTTPError as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e
        if not resp.is_success:
            raise FetchError(url, resp.reason_phrase or "request failed", status=resp.status_code)
        return resp.content

    async def _read_local(self, url: str) -> bytes:
        path = local_path(url)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, path.read_bytes)
        except OSError as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e

    async def aclose(self) -> None:
        client = self._client
        self._client = None
        if client is not None and self._owns_client:
            await client.aclose()
