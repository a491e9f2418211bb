"""
Per-key write locks serialising upserts to the same tree cell.

Supports an in-memory implementation for single-process runs and tests, and a
Redis-backed implementation when several workers share one store.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import ContextManager, Dict, Iterator, Protocol

import redis
from redis import exceptions as redis_exceptions

from orchard.errors import StorageError

logger = logging.getLogger(__name__)


class KeyLock(Protocol):
    """Minimal interface: hold an exclusive lock on a key for a block."""

    def hold(self, key: str) -> ContextManager[None]:
        ...


@dataclass
class InMemoryKeyLock:
    """
    One threading.Lock per key, shared by all threads of the process.

    An entry lives only while some thread holds or waits on its key.
    """

    locks: Dict[str, threading.Lock] = field(default_factory=dict)

    def __post_init__(self):
        self._guard = threading.Lock()
        self._holders: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self.locks.setdefault(key, threading.Lock())
            self._holders[key] = self._holders.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[key] -= 1
                if not self._holders[key]:
                    del self._holders[key]
                    del self.locks[key]


@dataclass
class RedisKeyLock:
    """Redis-backed distributed lock, one lock name per key."""

    url: str
    prefix: str = "orchard:lock:"
    timeout: float = 10.0

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        name = f"{self.prefix}{key}"
        lock = self.client.lock(
            name, timeout=self.timeout, blocking_timeout=self.timeout
        )
        try:
            acquired = lock.acquire()
        except redis_exceptions.RedisError as exc:
            logger.exception("Could not reach Redis for lock %s", name)
            raise StorageError("acquiring the write lock failed") from exc
        if not acquired:
            raise StorageError(f"timed out waiting for lock {name}")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis_exceptions.LockError:
                # The lock expired while we held it; the write already happened.
                logger.warning("Lock %s expired before release", name)
