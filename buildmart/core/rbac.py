from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable
from threading import Lock
from typing import Any, Protocol

import redis
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from buildmart.core.auth import AuthUser, get_current_user
from buildmart.core.config import Settings, get_settings
from buildmart.core.database import get_db
from buildmart.core.errors import ForbiddenError
from buildmart.metrics import observe_permission_cache_hit, observe_permission_cache_miss
from buildmart.users.models import Permission, RolePermission


logger = logging.getLogger("buildmart.rbac")

ADMIN_ROLE_NAME = "Admin"


class PermissionStore(Protocol):
    """Storage for role permission lists keyed by role id."""

    def get(self, role_id: str) -> list[str] | None:
        ...

    def set(self, role_id: str, permissions: list[str], ttl_seconds: int) -> None:
        ...

    def delete(self, role_id: str) -> None:
        ...

    def clear(self) -> None:
        ...


class InMemoryPermissionStore:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, tuple[float, list[str]]] = {}
        self._lock = Lock()
        self._clock = clock

    def get(self, role_id: str) -> list[str] | None:
        with self._lock:
            entry = self._entries.get(role_id)
            if entry is None:
                return None
            expires_at, permissions = entry
            if expires_at <= self._clock():
                del self._entries[role_id]
                return None
            return list(permissions)

    def set(self, role_id: str, permissions: list[str], ttl_seconds: int) -> None:
        with self._lock:
            self._entries[role_id] = (self._clock() + ttl_seconds, list(permissions))

    def delete(self, role_id: str) -> None:
        with self._lock:
            self._entries.pop(role_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisPermissionStore:
    key_prefix = "role_permissions:"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    def get(self, role_id: str) -> list[str] | None:
        raw = self._client.get(f"{self.key_prefix}{role_id}")
        if raw is None:
            return None
        return [str(item) for item in json.loads(raw)]

    def set(self, role_id: str, permissions: list[str], ttl_seconds: int) -> None:
        self._client.setex(f"{self.key_prefix}{role_id}", ttl_seconds, json.dumps(permissions))

    def delete(self, role_id: str) -> None:
        self._client.delete(f"{self.key_prefix}{role_id}")

    def clear(self) -> None:
        keys = list(self._client.scan_iter(match=f"{self.key_prefix}*"))
        if keys:
            self._client.delete(*keys)


class PermissionCache:
    """Role id to permission names, loaded from the database on a miss."""

    def __init__(self, store: PermissionStore, ttl_seconds: int = 300) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds

    def get_role_permissions(self, session: Session, role_id: uuid.UUID) -> list[str]:
        key = str(role_id)
        cached = self._store.get(key)
        if cached is not None:
            observe_permission_cache_hit()
            return cached

        observe_permission_cache_miss()
        permissions = load_role_permissions(session, role_id)
        self._store.set(key, permissions, self._ttl_seconds)
        return permissions

    def invalidate(self, role_id: uuid.UUID) -> None:
        self._store.delete(str(role_id))
        logger.info("permission_cache.invalidated", extra={"role_id": str(role_id)})

    def clear(self) -> None:
        self._store.clear()


def load_role_permissions(session: Session, role_id: uuid.UUID) -> list[str]:
    rows = session.scalars(
        select(Permission.name)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role_id)
        .order_by(Permission.name.asc())
    ).all()
    return [str(name) for name in rows]


def build_permission_cache(settings: Settings) -> PermissionCache:
    if settings.permission_cache_backend.lower() == "redis":
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        store: PermissionStore = RedisPermissionStore(client)
    else:
        store = InMemoryPermissionStore()
    return PermissionCache(store, ttl_seconds=settings.permission_cache_ttl_seconds)


_PERMISSION_CACHE: PermissionCache | None = None
_PERMISSION_CACHE_LOCK = Lock()


def set_permission_cache(cache: PermissionCache) -> None:
    global _PERMISSION_CACHE
    with _PERMISSION_CACHE_LOCK:
        _PERMISSION_CACHE = cache


def get_permission_cache() -> PermissionCache:
    global _PERMISSION_CACHE
    with _PERMISSION_CACHE_LOCK:
        if _PERMISSION_CACHE is None:
            _PERMISSION_CACHE = build_permission_cache(get_settings())
        return _PERMISSION_CACHE


def has_any_permission(granted: list[str], required: tuple[str, ...]) -> bool:
    if not required:
        return True
    granted_set = set(granted)
    return any(permission in granted_set for permission in required)


def require_permissions(*permissions: str) -> Callable[..., AuthUser]:
    required = tuple(permissions)

    def checker(
        user: AuthUser = Depends(get_current_user),
        db: Session = Depends(get_db),
        cache: PermissionCache = Depends(get_permission_cache),
    ) -> AuthUser:
        if user.role_id is None:
            raise ForbiddenError("user has no role assigned", details={"required": list(required), "actual": [], "role": None})
        if user.is_admin:
            return user

        granted = cache.get_role_permissions(db, user.role_id)
        if not has_any_permission(granted, required):
            details: dict[str, Any] = {
                "required": list(required),
                "actual": granted,
                "role": {"id": str(user.role_id), "name": user.role_name},
            }
            raise ForbiddenError("insufficient permissions", details=details)
        return user

    return checker
