"""
Per-User Evaluation Locks

Without serialization two concurrent evaluations for the same user
read the same history, so both can pass the velocity and behavior
checks. These locks optionally serialize "read history -> score ->
record" per user:

- NullUserLock: no serialization
- LocalUserLock: asyncio locks, one process only
- RedisUserLock: Redis lock shared by every worker
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.exceptions import LockError

logger = logging.getLogger("riskgate.engine")


class UserLock(ABC):
    """Serializes evaluations for one user."""

    @abstractmethod
    def hold(self, user_id: str):
        """Async context manager held for the duration of an evaluation."""


class NullUserLock(UserLock):
    """Evaluations for the same user may interleave."""

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        yield


class LocalUserLock(UserLock):
    """One asyncio.Lock per user, dropped when nobody holds or waits on it."""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._waiters[user_id] = self._waiters.get(user_id, 0) + 1
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[user_id] -= 1
            if self._waiters[user_id] == 0:
                del self._waiters[user_id]
                self._locks.pop(user_id, None)


class RedisUserLock(UserLock):
    """
    Distributed lock using redis-py's Lock.

    The lease expires after timeout_seconds so a crashed worker cannot
    hold a user's lock forever.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = "riskgate:",
        timeout_seconds: float = 5.0,
    ):
        self.redis = redis_client
        self.prefix = key_prefix
        self.timeout_seconds = timeout_seconds

    def _make_key(self, user_id: str) -> str:
        return f"{self.prefix}evaluation-lock:{user_id}"

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            self._make_key(user_id),
            timeout=self.timeout_seconds,
            blocking_timeout=self.timeout_seconds,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise TimeoutError(f"Could not acquire evaluation lock for user {user_id}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lease already expired; nothing left to release.
                logger.warning("Releasing evaluation lock for %s failed: %s", user_id, e)


def create_user_lock(
    backend: str,
    redis_client: Optional[redis.Redis] = None,
    key_prefix: str = "riskgate:",
    timeout_seconds: float = 5.0,
) -> UserLock:
    """Build the lock for a USER_LOCK_BACKEND value."""
    if backend == "local":
        return LocalUserLock(timeout_seconds=timeout_seconds)
    if backend == "redis":
        if redis_client is None:
            raise ValueError("RedisUserLock requires a Redis client")
        return RedisUserLock(redis_client, key_prefix=key_prefix, timeout_seconds=timeout_seconds)
    return NullUserLock()
