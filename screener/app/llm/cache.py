import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

DEFAULT_TTL_SEC = 3600.0
SWEEP_THRESHOLD = 1000


@dataclass
class _Entry:
    response: Any
    created_at: float
    expires_at: float


class ResponseCache:
    """In-process TTL cache for chat completions, keyed by the message list."""

    def __init__(self, ttl: float = DEFAULT_TTL_SEC, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}

    @staticmethod
    def key_for(messages: List[Dict[str, Any]]) -> str:
        payload = json.dumps(messages, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def get(self, messages: List[Dict[str, Any]]) -> Optional[Any]:
        key = self.key_for(messages)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry.response

    def set(self, messages: List[Dict[str, Any]], response: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        self._entries[self.key_for(messages)] = _Entry(
            response=response,
            created_at=now,
            expires_at=now + (self.ttl if ttl is None else ttl),
        )
        if len(self._entries) > SWEEP_THRESHOLD:
            self.sweep()

    def sweep(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now > e.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        ages = [now - e.created_at for e in self._entries.values()]
        return {
            "size": len(self._entries),
            "oldest_entry_sec": max(ages) if ages else None,
            "ttl_sec": self.ttl,
        }


response_cache = ResponseCache()
