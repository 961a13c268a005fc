"""In-process identity cache and access-token revocation list.

Both structures are advisory: the credential store stays the source of truth,
and neither survives a process restart. Multi-process deployments need a
shared backend behind the same protocols.
"""

from __future__ import annotations

import asyncio
import logging
import time
from threading import Lock
from typing import Callable, Protocol

from app.auth.models import Identity

LOGGER = logging.getLogger(__name__)


class IdentityCache(Protocol):
    def get(self, identity_id: str) -> Identity | None: ...

    def set(self, identity: Identity) -> None: ...

    def invalidate(self, identity_id: str) -> None: ...

    def sweep(self) -> int: ...

    def clear(self) -> None: ...


class RevocationList(Protocol):
    def revoke(self, jti: str, expires_at: int) -> None: ...

    def is_revoked(self, jti: str) -> bool: ...

    def sweep(self, now: float | None = None) -> int: ...


class InMemoryIdentityCache:
    """Identity snapshots trusted for ``ttl_seconds`` after they were loaded."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[str, tuple[Identity, float]] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, identity_id: str) -> Identity | None:
        """Return a fresh snapshot, dropping it when the window has passed."""
        with self._lock:
            entry = self._entries.get(identity_id)
            if entry is None:
                return None
            identity, cached_at = entry
            if self._clock() - cached_at > self._ttl:
                del self._entries[identity_id]
                return None
            return identity.model_copy()

    def set(self, identity: Identity) -> None:
        with self._lock:
            self._entries[identity.identity_id] = (identity.model_copy(), self._clock())

    def invalidate(self, identity_id: str) -> None:
        with self._lock:
            self._entries.pop(identity_id, None)

    def sweep(self) -> int:
        """Remove stale entries and return how many were dropped."""
        now = self._clock()
        with self._lock:
            stale = [key for key, (_, cached_at) in self._entries.items() if now - cached_at > self._ttl]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class InMemoryRevocationList:
    """Revoked token ids kept until the token would have expired anyway."""

    def __init__(
        self,
        *,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: dict[str, int] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def revoke(self, jti: str, expires_at: int) -> None:
        if not jti:
            return
        with self._lock:
            self._entries[jti] = int(expires_at)
            overflow = len(self._entries) - self._max_entries
        if overflow > 0:
            self.sweep()
            self._evict_soonest_expiring()

    def _evict_soonest_expiring(self) -> None:
        with self._lock:
            overflow = len(self._entries) - self._max_entries
            if overflow <= 0:
                return
            for jti, _ in sorted(self._entries.items(), key=lambda item: item[1])[:overflow]:
                del self._entries[jti]
        LOGGER.warning("revocation_list_evicted", extra={"event": str(overflow)})

    def is_revoked(self, jti: str) -> bool:
        with self._lock:
            return jti in self._entries

    def sweep(self, now: float | None = None) -> int:
        """Forget revocations of tokens that are past their expiry."""
        current = int(self._clock() if now is None else now)
        with self._lock:
            expired = [jti for jti, exp in self._entries.items() if exp <= current]
            for jti in expired:
                del self._entries[jti]
        return len(expired)


class CacheJanitor:
    """Background loop that periodically sweeps the cache and revocation list."""

    def __init__(
        self,
        cache: IdentityCache,
        revocations: RevocationList,
        *,
        interval_seconds: float,
    ) -> None:
        self._cache = cache
        self._revocations = revocations
        self._interval = max(1.0, float(interval_seconds))
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    def sweep_once(self) -> tuple[int, int]:
        dropped_identities = self._cache.sweep()
        dropped_revocations = self._revocations.sweep()
        LOGGER.info(
            "auth_cache_swept",
            extra={"event": f"identities={dropped_identities},revocations={dropped_revocations}"},
        )
        return dropped_identities, dropped_revocations

    async def start(self) -> None:
        """Start background sweeping if not already running."""
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop background sweeping gracefully."""
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                self.sweep_once()
