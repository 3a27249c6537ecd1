"""
Single-use nonce storage.

``consume_if_valid`` is the replay guard for the whole sign-in flow: it must
check and delete in one atomic step, never as a read followed by a write.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from ..config import Settings, settings as default_settings
from .models import InvalidFieldError, NonceStoreError


logger = structlog.stdlib.get_logger(__name__)


class NonceStore(ABC):
    """Issue/consume contract shared by every backend."""

    name: str = "nonce-store"

    @abstractmethod
    async def issue(self, nonce: str, ttl_seconds: int) -> None:
        """Record ``nonce`` as issued and unconsumed for ``ttl_seconds``."""

    @abstractmethod
    async def consume_if_valid(self, nonce: str) -> bool:
        """Atomically consume ``nonce``. False if unknown, spent or expired."""

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Delete expired entries and return how many were removed."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


@dataclass
class NonceEntry:
    expires_at: float


class InMemoryNonceStore(NonceStore):
    """Process-local store guarded by an asyncio lock."""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: Dict[str, NonceEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def issue(self, nonce: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise InvalidFieldError("ttl_seconds", "must be positive")
        async with self._lock:
            now = self._clock()
            existing = self._entries.get(nonce)
            if existing is not None and existing.expires_at > now:
                raise InvalidFieldError("nonce", "already issued")
            self._entries[nonce] = NonceEntry(expires_at=now + ttl_seconds)

    async def consume_if_valid(self, nonce: str) -> bool:
        async with self._lock:
            entry = self._entries.pop(nonce, None)
            if entry is None:
                return False
            return entry.expires_at > self._clock()

    async def sweep_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def size(self) -> int:
        return len(self._entries)


class RedisNonceStore(NonceStore):
    """
    Redis-backed store for multi-process deployments.

    Issue is ``SET NX EX``, consume is a single ``DEL`` whose reply count is the
    test-and-set result, and expiry is left to Redis key TTLs.
    """

    name = "redis"

    def __init__(self, client: "redis.Redis", key_prefix: str = "siwe:nonce:"):
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "siwe:nonce:") -> "RedisNonceStore":
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, key_prefix=key_prefix)

    def _key(self, nonce: str) -> str:
        return f"{self._prefix}{nonce}"

    async def issue(self, nonce: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise InvalidFieldError("ttl_seconds", "must be positive")
        try:
            created = await self._client.set(self._key(nonce), "1", ex=ttl_seconds, nx=True)
        except RedisError as exc:
            logger.error("nonce_store_unavailable", backend=self.name, operation="issue", error=str(exc))
            raise NonceStoreError(f"Failed to issue nonce: {exc}") from exc
        if not created:
            raise InvalidFieldError("nonce", "already issued")

    async def consume_if_valid(self, nonce: str) -> bool:
        try:
            deleted = await self._client.delete(self._key(nonce))
        except RedisError as exc:
            logger.error("nonce_store_unavailable", backend=self.name, operation="consume", error=str(exc))
            raise NonceStoreError(f"Failed to consume nonce: {exc}") from exc
        return deleted == 1

    async def sweep_expired(self) -> int:
        # Redis expires keys on its own.
        return 0

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._client.aclose()


def create_nonce_store(config: Optional[Settings] = None) -> NonceStore:
    """Build the backend selected by ``nonce_store_backend``."""
    config = config or default_settings
    if config.uses_redis:
        if not config.redis_url:
            raise ValueError("REDIS_URL must be set when NONCE_STORE_BACKEND=redis")
        return RedisNonceStore.from_url(config.redis_url, key_prefix=config.redis_key_prefix)
    return InMemoryNonceStore()


class NonceSweeper:
    """Background task that periodically clears expired nonces."""

    def __init__(self, store: NonceStore, interval_seconds: Optional[float] = None):
        self.store = store
        self.interval_seconds = interval_seconds or default_settings.nonce_sweep_interval_seconds
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name="nonce-sweeper")
        logger.info("nonce_sweeper_started", backend=self.store.name, interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("nonce_sweeper_stopped", backend=self.store.name)

    async def sweep_once(self) -> int:
        removed = await self.store.sweep_expired()
        if removed:
            logger.debug("nonce_sweep_completed", backend=self.store.name, removed=removed)
        return removed

    async def _run_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self.interval_seconds)
                try:
                    await self.sweep_once()
                except NonceStoreError as exc:
                    logger.warning("nonce_sweep_failed", backend=self.store.name, error=str(exc))
        except asyncio.CancelledError:
            return
