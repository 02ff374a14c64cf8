"""
Availability cache.

Advisory read-through cache for "is this item free?" answers, with a TTL
and explicit invalidation after every committed reserve/return. Reserve
decisions never consult it; the ledger stays the source of truth.

Every invalidation bumps a per-item generation. A fill records the
generation it observed before reading the ledger, and an entry whose
generation is behind the current one reads as a miss, so a fill that
raced an invalidation can never serve its stale answer.

Stores are passed in as handles:

    store = create_cache_store("redis://localhost:6379/0")
    cache = AvailabilityCache(store, get_sessionmaker(), ttl_seconds=300)
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, Optional, Tuple

import redis

from lending.repositories.ledger_repository import LedgerRepository
from lending.services.transaction import atomic

logger = logging.getLogger(__name__)


class CacheStore(ABC):
    """Minimal keyed store with per-key TTL."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def incr(self, key: str) -> Optional[int]:
        """Atomically increment a counter that never expires."""


class MemoryCacheStore(CacheStore):
    """Thread-safe in-process store. Expired keys are dropped on read."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def incr(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._data.get(key)
            value = int(entry[0]) + 1 if entry is not None else 1
            self._data[key] = (str(value), float("inf"))
            return value

    def __len__(self) -> int:
        return len(self._data)


class RedisCacheStore(CacheStore):
    """Redis-backed store shared between worker processes.

    Redis outages degrade to cache misses; the ledger answers instead.
    """

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        client = redis.Redis.from_url(url, socket_timeout=2, socket_connect_timeout=2)
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        try:
            value = self._client.get(key)
        except redis.RedisError as e:
            logger.warning(
                "Availability cache read failed",
                extra={"context": {"key": key, "error": str(e)}},
            )
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self._client.setex(key, ttl_seconds, value)
        except redis.RedisError as e:
            logger.warning(
                "Availability cache write failed",
                extra={"context": {"key": key, "error": str(e)}},
            )

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as e:
            # A stale entry would outlive the change; it still expires with its TTL
            logger.error(
                "Availability cache invalidation failed",
                extra={"context": {"key": key, "error": str(e)}},
            )

    def incr(self, key: str) -> Optional[int]:
        try:
            return int(self._client.incr(key))
        except redis.RedisError as e:
            logger.error(
                "Availability cache generation bump failed",
                extra={"context": {"key": key, "error": str(e)}},
            )
            return None


def create_cache_store(url: str) -> CacheStore:
    if url.startswith("memory://"):
        return MemoryCacheStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisCacheStore.from_url(url)
    raise ValueError(f"Unsupported availability cache URL: {url}")


class AvailabilityCache:
    KEY_PREFIX = "item_availability:"
    GENERATION_PREFIX = "item_availability_gen:"

    def __init__(self, store: CacheStore, session_factory, ttl_seconds: int = 300):
        self.store = store
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds

    @classmethod
    def key(cls, item_id: int) -> str:
        return f"{cls.KEY_PREFIX}{item_id}"

    @classmethod
    def generation_key(cls, item_id: int) -> str:
        return f"{cls.GENERATION_PREFIX}{item_id}"

    @staticmethod
    def encode(generation: str, available: bool) -> str:
        return f"{generation}:{'1' if available else '0'}"

    def _generation(self, item_id: int) -> str:
        return self.store.get(self.generation_key(item_id)) or "0"

    def _cached(self, item_id: int, generation: str) -> Optional[bool]:
        cached = self.store.get(self.key(item_id))
        if cached is None:
            return None
        entry_generation, _, flag = cached.partition(":")
        if entry_generation != generation:
            return None
        return flag == "1"

    def get(self, item_id: int) -> bool:
        """Cached availability; reads through to the ledger on a miss.

        Raises NotFoundError for unknown items; those answers are not cached.
        """
        # Observed before the ledger read; a later invalidation outdates the fill
        generation = self._generation(item_id)
        cached = self._cached(item_id, generation)
        if cached is not None:
            return cached

        with atomic(self.session_factory, "availability_lookup", item_id=item_id) as db:
            available = LedgerRepository(db).is_available(item_id)

        self.store.set(
            self.key(item_id), self.encode(generation, available), self.ttl_seconds
        )
        return available

    def get_many(self, item_ids: Iterable[int]) -> Dict[int, bool]:
        """Availability for several items; misses are filled with one ledger query.

        Unknown ids are left out of the result.
        """
        item_ids = list(dict.fromkeys(item_ids))
        result: Dict[int, bool] = {}
        generations: Dict[int, str] = {}
        for item_id in item_ids:
            generations[item_id] = self._generation(item_id)
            cached = self._cached(item_id, generations[item_id])
            if cached is not None:
                result[item_id] = cached

        missing = [item_id for item_id in item_ids if item_id not in result]
        if missing:
            with atomic(
                self.session_factory, "availability_batch_lookup", count=len(missing)
            ) as db:
                fetched = LedgerRepository(db).availability_for(missing)
            for item_id, available in fetched.items():
                self.store.set(
                    self.key(item_id),
                    self.encode(generations[item_id], available),
                    self.ttl_seconds,
                )
            result.update(fetched)
        return {item_id: result[item_id] for item_id in item_ids if item_id in result}

    def invalidate(self, item_id: int) -> None:
        self.store.incr(self.generation_key(item_id))
        self.store.delete(self.key(item_id))
