# helpers.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import os
import time


def _now() -> float:
    return time.time()


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _preview(text: str, limit: int = 60) -> str:
    """Single-line prefix of `text` for log messages."""
    flat = " ".join((text or "").split())
    return flat if len(flat) <= limit else flat[:limit] + "..."


@dataclass
class RuntimeInfo:
    """What /api/health and /api/status report about this process."""
    pid: int = field(default_factory=os.getpid)
    port: Optional[int] = None
    started_at: float = field(default_factory=_now)
    started_iso: str = field(default_factory=_iso_now)

    def uptime(self) -> float:
        return round(max(0.0, _now() - self.started_at), 3)
