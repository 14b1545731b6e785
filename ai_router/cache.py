"""Short-lived response cache keyed by a normalized request.

Entries expire exactly at ``stored_at + ttl``. Expired entries are evicted
opportunistically: the looked-up entry on ``get`` and every expired entry
on ``set``. There is no background sweeper.
"""

import hashlib
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ai_router.classifier import normalize_text
from ai_router.models import ChatRequest, ChatResponse


@dataclass
class CacheEntry:
    """A stored response and its expiry bookkeeping."""

    key: str
    user_id: str
    response: ChatResponse
    stored_at: float
    ttl: float
    hits: int = 0

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


def cache_key(request: ChatRequest) -> str:
    """Return a stable SHA-256 key for a request.

    Only fields that influence the answer participate; history, context
    flags and other metadata do not.
    """
    fields = {
        "user_id": request.user_id,
        "conversation_id": request.conversation_id,
        "chat_type": request.chat_type,
        "message": normalize_text(request.message),
        "preferred_provider": request.preferred_provider,
        "preferred_model": request.preferred_model,
    }
    canonical = json.dumps(fields, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResponseCache:
    """In-memory TTL cache for chat responses. Thread-safe."""

    def __init__(self, ttl_seconds: float = 300.0, max_size: int = 1000) -> None:
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, request: ChatRequest) -> Optional[ChatResponse]:
        """Return the cached response marked ``cached=True``, or None."""
        key = cache_key(request)
        now = time.time()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(now):
                del self._entries[key]
                self._misses += 1
                return None
            entry.hits += 1
            self._hits += 1
            return entry.response.model_copy(update={"cached": True})

    def set(self, request: ChatRequest, response: ChatResponse) -> None:
        """Store a response, evicting expired and then oldest entries."""
        key = cache_key(request)
        now = time.time()
        with self._lock:
            self._evict_expired(now)
            if key not in self._entries and len(self._entries) >= self._max_size:
                self._evict_oldest(max(1, self._max_size // 10))
            self._entries[key] = CacheEntry(
                key=key,
                user_id=request.user_id,
                response=response,
                stored_at=now,
                ttl=self._ttl,
            )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def clear_user(self, user_id: str) -> int:
        """Drop every entry belonging to a user. Returns the count removed."""
        with self._lock:
            keys = [k for k, e in self._entries.items() if e.user_id == user_id]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._entries)

    def statistics(self) -> Dict[str, Any]:
        now = time.time()
        with self._lock:
            expired = sum(1 for e in self._entries.values() if e.is_expired(now))
            size = len(self._entries)
        lookups = self._hits + self._misses
        return {
            "size": size,
            "max_size": self._max_size,
            "ttl_seconds": self._ttl,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
            "expired_entries": expired,
        }

    def _evict_expired(self, now: float) -> None:
        expired: List[str] = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]

    def _evict_oldest(self, count: int) -> None:
        oldest = sorted(self._entries.values(), key=lambda e: e.stored_at)[:count]
        for entry in oldest:
            del self._entries[entry.key]
