"""Expiring session store for inline keyboard callbacks.

Telegram limits ``callback_data`` to 64 bytes, so every button carries a
short opaque token and the actual intent lives here. Tokens are single
use: ``take`` removes the entry atomically, so a click processed twice
succeeds only once. Unclicked entries expire after the TTL.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import math
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from prometheus_client import Counter, Gauge

from alertmanager_telegram.errors import SessionTokenNotFoundError
from alertmanager_telegram.models import CallbackIntent

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 3600.0
DEFAULT_SWEEP_INTERVAL = 60.0
MAX_PUT_ATTEMPTS = 5

SESSION_ENTRIES = Gauge(
    "alertbot_session_entries",
    "Callback tokens currently held by the in-memory session store",
)

SESSION_TAKES = Counter(
    "alertbot_session_takes_total",
    "Callback token lookups",
    ["outcome"],
)


def new_token() -> str:
    """Generate a time-sortable token with 64 random bits (32 hex chars)."""
    return f"{time.time_ns():016x}{secrets.token_hex(8)}"


class SessionStore(Protocol):
    """Protocol for callback session stores."""

    async def put(self, intent: CallbackIntent) -> str:
        """Store an intent and return its fresh token."""
        ...

    async def take(self, token: str) -> CallbackIntent:
        """Atomically fetch and remove an intent.

        Raises:
            SessionTokenNotFoundError: If the token is unknown, used or expired.
        """
        ...

    async def sweep(self) -> int:
        """Remove expired entries, returning how many were removed."""
        ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


@dataclass(frozen=True)
class _Entry:
    intent: CallbackIntent
    expires_at: float


class MemorySessionStore:
    """Process-local session store guarded by a lock.

    Example:
        ```python
        store = MemorySessionStore(ttl=3600)
        await store.start()

        token = await store.put(CallbackIntent(CallbackKind.JOBS))
        intent = await store.take(token)  # a second take raises
        ```
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        *,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        token_factory: Callable[[], str] = new_token,
    ) -> None:
        """Initialize the store.

        Args:
            ttl: Seconds an unclicked token stays valid.
            sweep_interval: Seconds between background sweeps.
            clock: Monotonic clock, injectable for tests.
            token_factory: Token generator, injectable for tests.
        """
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._token_factory = token_factory

        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()
        self._sweep_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    async def put(self, intent: CallbackIntent) -> str:
        expires_at = self._clock() + self.ttl
        async with self._lock:
            token = self._token_factory()
            while token in self._entries:
                token = self._token_factory()
            self._entries[token] = _Entry(intent=intent, expires_at=expires_at)
            SESSION_ENTRIES.set(len(self._entries))
        return token

    async def take(self, token: str) -> CallbackIntent:
        async with self._lock:
            entry = self._entries.pop(token, None)
            SESSION_ENTRIES.set(len(self._entries))

        if entry is None:
            SESSION_TAKES.labels(outcome="missing").inc()
            raise SessionTokenNotFoundError(f"callback token {token!r} not found")
        if entry.expires_at <= self._clock():
            SESSION_TAKES.labels(outcome="expired").inc()
            raise SessionTokenNotFoundError(f"callback token {token!r} expired")

        SESSION_TAKES.labels(outcome="found").inc()
        return entry.intent

    async def sweep(self) -> int:
        now = self._clock()
        async with self._lock:
            expired = [t for t, e in self._entries.items() if e.expires_at <= now]
            for token in expired:
                del self._entries[token]
            SESSION_ENTRIES.set(len(self._entries))

        if expired:
            logger.debug("Swept %d expired callback tokens", len(expired))
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error sweeping session store: %s", e)

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.debug("Session sweeper started (ttl=%ss)", self.ttl)

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None


class RedisSessionStore:
    """Session store backed by Redis.

    Entries are written with ``SET NX EX`` and consumed with ``GETDEL``,
    so expiry and at-most-once consumption are enforced by Redis and the
    store can be shared by several bot replicas.
    """

    KEY_PREFIX = "alertbot:callback:"

    def __init__(
        self,
        redis: Any,
        *,
        ttl: float = DEFAULT_TTL_SECONDS,
        key_prefix: str = KEY_PREFIX,
    ) -> None:
        """Initialize the store.

        Args:
            redis: Redis client (async).
            ttl: Seconds an unclicked token stays valid.
            key_prefix: Prefix for the Redis keys.
        """
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.redis = redis
        self.ttl = ttl
        self.key_prefix = key_prefix
        self._ttl_seconds = max(1, math.ceil(ttl))

    def _key(self, token: str) -> str:
        return f"{self.key_prefix}{token}"

    async def put(self, intent: CallbackIntent) -> str:
        value = json.dumps(intent.to_dict())
        for _ in range(MAX_PUT_ATTEMPTS):
            token = new_token()
            if await self.redis.set(self._key(token), value, ex=self._ttl_seconds, nx=True):
                return token
        raise RuntimeError("could not allocate a unique callback token")

    async def take(self, token: str) -> CallbackIntent:
        raw = await self.redis.getdel(self._key(token))
        if raw is None:
            SESSION_TAKES.labels(outcome="missing").inc()
            raise SessionTokenNotFoundError(f"callback token {token!r} not found")

        SESSION_TAKES.labels(outcome="found").inc()
        if isinstance(raw, bytes):
            raw = raw.decode()
        return CallbackIntent.from_dict(json.loads(raw))

    async def sweep(self) -> int:
        # keys carry their own EX
        return 0

    async def start(self) -> None:
        await self.redis.ping()
        logger.info("Redis session store ready (ttl=%ss)", self._ttl_seconds)

    async def stop(self) -> None:
        return None
