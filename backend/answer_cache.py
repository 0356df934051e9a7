"""
In-memory TTL cache for generated interview answers.

Entries are keyed by the question, a prefix of the resume text and the job
details, so repeated requests for the same answer within the TTL window
skip the completion call. The server is single-threaded: get/put/sweep
never interleave, so there is no locking here.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from helpers import _now

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60
DEFAULT_SWEEP_SECONDS = 30 * 60
DEFAULT_RESUME_PREFIX = 500
DEFAULT_MAX_ENTRIES = 5000


@dataclass
class CacheEntry:
    payload: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class AnswerCache:
    """
    Bounded-lifetime memoization of generated answers.

    Attributes:
        ttl_seconds: default lifetime of an entry
        sweep_interval: seconds between two sweeps run by sweep_if_due()
        resume_prefix: number of resume characters that go into the key
        max_entries: size bound; the oldest entries are evicted past it
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_SECONDS,
        resume_prefix: int = DEFAULT_RESUME_PREFIX,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = _now,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self.resume_prefix = resume_prefix
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self.last_sweep = clock()

        self.hits = 0
        self.misses = 0

    @classmethod
    def from_config(cls, config, clock: Callable[[], float] = _now) -> "AnswerCache":
        return cls(
            ttl_seconds=config.CACHE_TTL_SECONDS,
            sweep_interval=config.CACHE_SWEEP_SECONDS,
            resume_prefix=config.CACHE_RESUME_PREFIX,
            max_entries=config.CACHE_MAX_ENTRIES,
            clock=clock,
        )

    def key(self, request) -> str:
        """
        Cache key for a GenerationRequest.

        Only the first `resume_prefix` characters of the resume take part:
        two resumes sharing that prefix share answers.
        """
        job_info = json.dumps(request.job.as_dict(), separators=(",", ":"), ensure_ascii=False)
        return f"{request.question}_{request.resume[:self.resume_prefix]}_{job_info}"

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.payload

    def put(self, key: str, payload: str, ttl: Optional[float] = None) -> None:
        if ttl is None:
            ttl = self.ttl_seconds
        elif ttl < 0:
            raise ValueError("ttl must not be negative")
        now = self._clock()
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._make_room()
        self._entries.pop(key, None)  # re-insert so eviction order follows write time
        self._entries[key] = CacheEntry(payload=payload, expires_at=now + ttl)

    def sweep(self) -> int:
        """Remove expired entries. Returns how many were dropped."""
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for k in expired:
            del self._entries[k]
        self.last_sweep = now
        if expired:
            logger.info("Answer cache sweep removed %d expired entries (%d left)", len(expired), len(self._entries))
        return len(expired)

    def sweep_if_due(self) -> int:
        if self._clock() - self.last_sweep < self.sweep_interval:
            return 0
        return self.sweep()

    def _make_room(self) -> None:
        self.sweep()
        overflow = len(self._entries) - self.max_entries + 1
        if overflow <= 0:
            return
        # dicts keep insertion order, so the first keys are the oldest writes
        for k in list(self._entries)[:overflow]:
            del self._entries[k]
        logger.warning("Answer cache full (%d entries), evicted %d oldest", self.max_entries, overflow)

    def size(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}

    def clear(self) -> None:
        self._entries.clear()
        self.last_sweep = self._clock()
