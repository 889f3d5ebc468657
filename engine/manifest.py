from __future__ import annotations

import json
from typing import Any, List, Optional
from urllib.parse import urljoin, urlparse

from engine.errors import FetchError
from engine.fetch import Fetcher, is_remote, local_path


def parse_manifest(payload: Any, *, base: Optional[str] = None, source: str = "manifest") -> List[str]:
    """Turn a manifest payload into a flat list of sound urls.

    Accepts {"files": [...]} or a bare list. Relative entries are resolved
    against `base` (the manifest's own location). Duplicates and blanks are dropped.
    """
    if isinstance(payload, dict):
        files = payload.get("files")
    else:
        files = payload
    if not isinstance(files, list):
        raise FetchError(source, "manifest has no 'files' list")

    urls: List[str] = []
    for entry in files:
        if not isinstance(entry, str):
            continue
        entry = entry.strip()
        if not entry:
            continue
        urls.append(resolve_entry(entry, base))
    return list(dict.fromkeys(urls))


def resolve_entry(entry: str, base: Optional[str]) -> str:
    if not base or urlparse(entry).scheme in ("http", "https", "file"):
        return entry
    if is_remote(base):
        return urljoin(base, entry)
    path = local_path(entry)
    if path.is_absolute():
        return str(path)
    return str(local_path(base).parent / path)


async def load_manifest(source: str, fetch: Fetcher) -> List[str]:
    data = await fetch(source)
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise FetchError(source, f"manifest is not valid JSON: {e}") from e
    return parse_manifest(payload, base=source, source=source)
