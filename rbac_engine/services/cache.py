"""Per-user resolved-permission cache powered by Upstash Redis with in-memory fallback.

The cache is an optimisation only. Entries are keyed by user id, expire after
``permission_cache_ttl`` seconds, and are dropped explicitly whenever a
user's binding or their role's permission set changes. A miss always falls
back to live resolution.
"""

from __future__ import annotations

import json
import time
from threading import RLock
from typing import Dict, Optional, Protocol, Sequence, Tuple, cast
from uuid import UUID

import httpx

from rbac_engine.core.config import get_settings
from rbac_engine.services.decision import ResolvedPermissions


class PermissionCache(Protocol):
    """Contract for caching resolved permissions by user id."""

    def get(self, user_id: str) -> Optional[ResolvedPermissions]:
        ...

    def set(self, user_id: str, value: ResolvedPermissions) -> None:
        ...

    def invalidate(self) -> None:
        ...

    def invalidate_for_user(self, user_id: str) -> None:
        ...


class InMemoryPermissionCache:
    """Thread-safe in-memory cache with per-entry expiry."""

    def __init__(self, ttl_seconds: int = 60) -> None:
        self._ttl = max(ttl_seconds, 0)
        self._store: Dict[str, Tuple[float, ResolvedPermissions]] = {}
        self._lock = RLock()

    def get(self, user_id: str) -> Optional[ResolvedPermissions]:
        with self._lock:
            entry = self._store.get(user_id)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._store[user_id]
                return None
            return value

    def set(self, user_id: str, value: ResolvedPermissions) -> None:
        if self._ttl == 0:
            return
        with self._lock:
            self._store[user_id] = (time.monotonic() + self._ttl, value)

    def invalidate(self) -> None:
        with self._lock:
            self._store.clear()

    def invalidate_for_user(self, user_id: str) -> None:
        with self._lock:
            self._store.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class RedisPermissionCache:
    """Redis-backed cache using the Upstash REST API."""

    def __init__(
        self,
        *,
        url: str,
        token: str,
        prefix: str,
        ttl_seconds: int,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._client = client or httpx.Client(
            base_url=url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=5.0,
        )
        self._ttl_ms = max(ttl_seconds, 0) * 1000
        self._prefix = prefix
        self._registry_key = f"{self._prefix}:users"

    def get(self, user_id: str) -> Optional[ResolvedPermissions]:
        result = self._execute("GET", self._user_key(user_id))
        if result is None:
            return None
        payload = json.loads(str(result))
        return ResolvedPermissions(
            user_id=UUID(payload["user_id"]),
            role=payload["role"],
            permissions=frozenset(payload["permissions"]),
            is_admin=bool(payload["is_admin"]),
        )

    def set(self, user_id: str, value: ResolvedPermissions) -> None:
        if self._ttl_ms == 0:
            return
        payload = json.dumps(
            {
                "user_id": str(value.user_id),
                "role": value.role,
                "permissions": sorted(value.permissions),
                "is_admin": value.is_admin,
            }
        )
        self._execute("SET", self._user_key(user_id), payload, "PX", str(self._ttl_ms))
        self._execute("SADD", self._registry_key, user_id)

    def invalidate(self) -> None:
        user_ids = list(cast(Sequence[str], self._execute("SMEMBERS", self._registry_key) or []))
        if user_ids:
            self._execute("DEL", *[self._user_key(user_id) for user_id in user_ids])
        self._execute("DEL", self._registry_key)

    def invalidate_for_user(self, user_id: str) -> None:
        self._execute("DEL", self._user_key(user_id))
        self._execute("SREM", self._registry_key, user_id)

    def _user_key(self, user_id: str) -> str:
        return f"{self._prefix}:resolved:{user_id}"

    def _execute(self, *command: str) -> Optional[object]:
        response = self._client.post("/", json=list(command))
        response.raise_for_status()
        payload = response.json()
        return payload.get("result")


_shared_cache: Optional[PermissionCache] = None


def get_permission_cache() -> PermissionCache:
    """Return the process-wide permission cache instance."""

    global _shared_cache
    if _shared_cache is not None:
        return _shared_cache

    settings = get_settings()
    if settings.redis_url and settings.redis_token:
        _shared_cache = RedisPermissionCache(
            url=settings.redis_url,
            token=settings.redis_token,
            prefix=settings.redis_cache_prefix,
            ttl_seconds=settings.permission_cache_ttl,
        )
    else:
        _shared_cache = InMemoryPermissionCache(ttl_seconds=settings.permission_cache_ttl)

    return _shared_cache


def set_permission_cache(cache: Optional[PermissionCache]) -> None:
    """Replace the process-wide cache; ``None`` re-reads settings on next use."""

    global _shared_cache
    _shared_cache = cache
