import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from orderscan.core.errors import FileTooLargeError
from orderscan.core.metrics import FILE_CACHE_EVICTIONS

logger = logging.getLogger(__name__)

Payload = Union[bytes, str]


def generate_file_id() -> str:
    # uuid4 draws from os.urandom
    return f"file_{uuid.uuid4().hex}"


def estimate_payload_size(payload: Payload) -> int:
    """Approximate decoded size in bytes.

    Raw bytes count as-is. Text is treated as base64, so four characters are
    three bytes minus the trailing '=' padding.
    """
    if isinstance(payload, (bytes, bytearray)):
        return len(payload)
    length = len(payload)
    padding = 0
    if payload.endswith("=="):
        padding = 2
    elif payload.endswith("="):
        padding = 1
    return max(length * 3 // 4 - padding, 0)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: Payload
    mime_type: str
    created_at: float
    size_bytes: int


class FileCache:
    """In-process store for uploaded files, bounded by size and age.

    One lock guards both the entry map and the byte counter. Every removal
    (TTL expiry on lookup, periodic sweep, quota eviction, explicit discard)
    goes through ``_remove`` so ``total_bytes`` always equals the sum of the
    live entries' ``size_bytes``.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_item_bytes: int = 50 * 1024 * 1024,
        max_total_bytes: int = 100 * 1024 * 1024,
        max_items: int = 100,
        clock: Callable[[], float] = time.time,
    ):
        if max_item_bytes > max_total_bytes:
            raise ValueError("max_item_bytes cannot exceed max_total_bytes")
        self.ttl = ttl_seconds
        self.max_item_bytes = max_item_bytes
        self.max_total_bytes = max_total_bytes
        self.max_items = max_items
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._total_bytes = 0

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def ensure_fits(self, size_bytes: int) -> None:
        if size_bytes > self.max_item_bytes:
            raise FileTooLargeError(size_bytes=size_bytes, limit_bytes=self.max_item_bytes)

    def insert(self, key: str, payload: Payload, mime_type: str) -> CacheEntry:
        if not key:
            raise ValueError("cache key must not be empty")
        size = estimate_payload_size(payload)
        self.ensure_fits(size)

        with self._lock:
            self._remove(key, "replaced")
            while self._entries and (
                self._total_bytes + size > self.max_total_bytes
                or len(self._entries) >= self.max_items
            ):
                self._evict_oldest("quota")
            entry = CacheEntry(
                key=key,
                payload=payload,
                mime_type=mime_type,
                created_at=self._clock(),
                size_bytes=size,
            )
            self._entries[key] = entry
            self._total_bytes += size
        logger.info(f"Cached {key} ({size} bytes, {mime_type})")
        return entry

    def lookup(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._is_expired(entry, self._clock()):
                self._remove(key, "expired")
                return None
            return entry

    def evict_oldest(self) -> Optional[CacheEntry]:
        with self._lock:
            return self._evict_oldest("quota")

    def discard(self, key: str, reason: str = "consumed") -> Optional[CacheEntry]:
        with self._lock:
            return self._remove(key, reason)

    def sweep_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for key in expired:
                self._remove(key, "expired")
        if expired:
            logger.info(f"Swept {len(expired)} expired file(s) from cache")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            for key in list(self._entries):
                self._remove(key, "cleared")

    def stats(self) -> dict:
        with self._lock:
            return {
                "items": len(self._entries),
                "total_bytes": self._total_bytes,
                "max_item_bytes": self.max_item_bytes,
                "max_total_bytes": self.max_total_bytes,
                "max_items": self.max_items,
                "ttl_seconds": self.ttl,
            }

    # Callers must hold self._lock for everything below.

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl

    def _evict_oldest(self, reason: str) -> Optional[CacheEntry]:
        if not self._entries:
            return None
        oldest_key = min(self._entries.values(), key=lambda e: e.created_at).key
        evicted = self._remove(oldest_key, reason)
        if evicted is not None and reason == "quota":
            logger.info(f"Evicted {oldest_key} to stay within cache quota")
        return evicted

    def _remove(self, key: str, reason: str) -> Optional[CacheEntry]:
        entry = self._entries.pop(key, None)
        if entry is None:
            return None
        self._total_bytes -= entry.size_bytes
        FILE_CACHE_EVICTIONS.labels(reason=reason).inc()
        return entry
