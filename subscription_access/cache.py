"""
Subscription snapshot cache: Redis when REDIS_URL is reachable, in-process otherwise.

Entries keep the raw payload with the time it was stored. Freshness is
decided by the caller, so a stale entry can still serve as the last known
good snapshot when the authoritative backend is unreachable.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 1
# Stale snapshots are kept this long for fallback use
DEFAULT_RETENTION_SECONDS = 24 * 3600


@dataclass(frozen=True)
class CachedSnapshot:
    tenant_id: str
    payload: Optional[Dict[str, Any]]
    cached_at: float

    def age(self, now: Optional[float] = None) -> float:
        return (time.time() if now is None else now) - self.cached_at

    def is_fresh(self, ttl_seconds: int, now: Optional[float] = None) -> bool:
        return self.age(now) <= ttl_seconds


class SubscriptionSnapshotCache:
    """Per-tenant subscription payload cache."""

    def __init__(self, redis_url: Optional[str] = None, retention_seconds: int = DEFAULT_RETENTION_SECONDS) -> None:
        self._retention_seconds = retention_seconds
        self._redis = None
        self._mem: Dict[str, dict] = {}

        if redis_url:
            try:
                self._redis = redis.from_url(redis_url, decode_responses=True)
                self._redis.ping()
            except (redis.RedisError, ValueError) as e:
                logger.warning("Redis unavailable, using in-memory snapshot cache: %s", e)
                self._redis = None

    @property
    def is_shared(self) -> bool:
        return self._redis is not None

    @staticmethod
    def _require_tenant_id(tenant_id: str) -> str:
        normalized = str(tenant_id).strip()
        if not normalized:
            raise ValueError("tenant_id is required")
        return normalized

    @staticmethod
    def _key(tenant_id: str) -> str:
        return f"subscriptions:v{CACHE_SCHEMA_VERSION}:{tenant_id}"

    def get(self, tenant_id: str, *, now: Optional[float] = None) -> Optional[CachedSnapshot]:
        key = self._key(self._require_tenant_id(tenant_id))

        if self._redis is not None:
            try:
                raw = self._redis.get(key)
            except Exception as e:
                logger.warning("Subscription cache get failed: %s", e, extra={"tenant_id": tenant_id})
                return None
            if not raw:
                return None
            try:
                return _decode_snapshot(json.loads(raw))
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                logger.warning("Discarding unreadable subscription cache entry: %s", e, extra={"tenant_id": tenant_id})
                return None

        data = self._mem.get(key)
        if data is None:
            return None
        snapshot = _decode_snapshot(data)
        if snapshot.age(now) > self._retention_seconds:
            self._mem.pop(key, None)
            return None
        return snapshot

    def set(self, tenant_id: str, payload: Optional[Dict[str, Any]], *, cached_at: Optional[float] = None) -> CachedSnapshot:
        normalized_tenant_id = self._require_tenant_id(tenant_id)
        snapshot = CachedSnapshot(
            tenant_id=normalized_tenant_id,
            payload=payload,
            cached_at=time.time() if cached_at is None else cached_at,
        )
        encoded = _encode_snapshot(snapshot)
        key = self._key(normalized_tenant_id)

        if self._redis is not None:
            try:
                self._redis.setex(key, self._retention_seconds, json.dumps(encoded, default=str))
            except Exception as e:
                logger.warning("Subscription cache set failed: %s", e, extra={"tenant_id": tenant_id})
            return snapshot

        self._mem[key] = encoded
        return snapshot

    def invalidate(self, tenant_id: str) -> None:
        key = self._key(self._require_tenant_id(tenant_id))
        if self._redis is not None:
            try:
                self._redis.delete(key)
            except Exception as e:
                logger.warning("Subscription cache delete failed: %s", e, extra={"tenant_id": tenant_id})
        self._mem.pop(key, None)


def _encode_snapshot(snapshot: CachedSnapshot) -> dict:
    return {
        "schema_version": CACHE_SCHEMA_VERSION,
        "tenant_id": snapshot.tenant_id,
        "payload": snapshot.payload,
        "cached_at": snapshot.cached_at,
    }


def _decode_snapshot(raw: dict) -> CachedSnapshot:
    if int(raw.get("schema_version", CACHE_SCHEMA_VERSION)) != CACHE_SCHEMA_VERSION:
        raise ValueError("Unsupported subscription cache schema version")
    return CachedSnapshot(
        tenant_id=raw["tenant_id"],
        payload=raw.get("payload"),
        cached_at=float(raw["cached_at"]),
    )
