from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

@dataclass(frozen=True, slots=True)
class LogRecord:
    level: str
    voice_id: str
    url: str
    tod: datetime
    source: str
    message: str
    metadata: Dict[str, Any]

    def format_line(self) -> str:
        ts = self.tod.isoformat(timespec="milliseconds")
        return f"[{ts}] [{self.source}] voice={self.voice_id} url={self.url} {self.message} {self.metadata}"
