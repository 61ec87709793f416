"""
Short-lived login state: pending SRP handshakes and pending 2FA logins.

Both live behind the same small TTL key-value interface so a single-process
deployment can keep them in memory while a multi-instance deployment points
every worker at one redis.
"""
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis

from zkvault.core.config import PENDING_STORE_BACKEND, REDIS_URL

logger = logging.getLogger(__name__)


class PendingStore(ABC):
    """TTL key-value store for JSON-serialisable dicts."""

    @abstractmethod
    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the live value without touching its expiry."""

    @abstractmethod
    def replace(self, key: str, value: Dict[str, Any]) -> bool:
        """Overwrite a live value, keeping its expiry. False if the key is gone."""

    @abstractmethod
    def pop(self, key: str) -> Optional[Dict[str, Any]]:
        """Atomically return and delete the live value."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    def sweep(self) -> int:
        """Evict expired entries, returning how many were removed."""

    @abstractmethod
    def clear(self) -> None:
        ...


class MemoryPendingStore(PendingStore):
    """In-memory store, expiry checked lazily on access and by sweep()."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._clock = clock
        self.lock = threading.Lock()

    def _live(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        with self.lock:
            self._entries[key] = (self._clock() + ttl, dict(value))

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self.lock:
            value = self._live(key)
            return dict(value) if value is not None else None

    def replace(self, key: str, value: Dict[str, Any]) -> bool:
        with self.lock:
            if self._live(key) is None:
                return False
            expires_at, _ = self._entries[key]
            self._entries[key] = (expires_at, dict(value))
            return True

    def pop(self, key: str) -> Optional[Dict[str, Any]]:
        with self.lock:
            value = self._live(key)
            if value is None:
                return None
            del self._entries[key]
            return value

    def delete(self, key: str) -> bool:
        with self.lock:
            return self._entries.pop(key, None) is not None

    def sweep(self) -> int:
        with self.lock:
            now = self._clock()
            expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info(f"Swept {len(expired)} expired pending entries")
        return len(expired)

    def clear(self) -> None:
        with self.lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)


class RedisPendingStore(PendingStore):
    """Shared store for multi-instance deployments; redis enforces the TTL."""

    def __init__(self, redis_url: str = "redis://localhost:6379/0", prefix: str = "zkvault:pending:", client=None):
        self.redis = client if client is not None else redis.from_url(redis_url)
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        self.redis.setex(self._key(key), ttl, json.dumps(value))

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.redis.get(self._key(key))
        return json.loads(raw) if raw else None

    def replace(self, key: str, value: Dict[str, Any]) -> bool:
        # XX: only if the key still exists, KEEPTTL: leave its expiry alone
        return bool(self.redis.set(self._key(key), json.dumps(value), xx=True, keepttl=True))

    def pop(self, key: str) -> Optional[Dict[str, Any]]:
        pipe = self.redis.pipeline()
        pipe.get(self._key(key))
        pipe.delete(self._key(key))
        raw, deleted = pipe.execute()
        # Only the caller whose DELETE removed the key gets the value
        if not raw or not deleted:
            return None
        return json.loads(raw)

    def delete(self, key: str) -> bool:
        return self.redis.delete(self._key(key)) > 0

    def sweep(self) -> int:
        return 0

    def clear(self) -> None:
        keys = list(self.redis.scan_iter(match=f"{self.prefix}*"))
        if keys:
            self.redis.delete(*keys)


def build_pending_store(backend: str = PENDING_STORE_BACKEND) -> PendingStore:
    if backend == "redis":
        logger.info("Using redis for pending login state")
        return RedisPendingStore(REDIS_URL)
    if backend != "memory":
        raise ValueError(f"Unknown PENDING_STORE_BACKEND: {backend}")
    return MemoryPendingStore()


pending_store: PendingStore = build_pending_store()
