from __future__ import annotations

import json

import pytest
import redis

from conftest import make_payload
from subscription_access.cache import (
    CACHE_SCHEMA_VERSION,
    SubscriptionSnapshotCache,
    _decode_snapshot,
    _encode_snapshot,
)
from subscription_access.service import SubscriptionAccessService


class _FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.store.pop(key, None)


class _BrokenRedis:
    def get(self, key):
        raise redis.ConnectionError("down")

    def setex(self, key, ttl, value):
        raise redis.ConnectionError("down")

    def delete(self, key):
        raise redis.ConnectionError("down")


def test_in_memory_cache_round_trip():
    cache = SubscriptionSnapshotCache(redis_url=None)
    payload = make_payload()

    cache.set("tenant-1", payload, cached_at=100.0)
    snapshot = cache.get("tenant-1", now=150.0)

    assert cache.is_shared is False
    assert snapshot.payload == payload
    assert snapshot.age(150.0) == 50.0
    assert snapshot.is_fresh(60, now=150.0) is True
    assert snapshot.is_fresh(30, now=150.0) is False


def test_in_memory_entries_expire_after_retention():
    cache = SubscriptionSnapshotCache(redis_url=None, retention_seconds=100)
    cache.set("tenant-1", make_payload(), cached_at=0.0)

    assert cache.get("tenant-1", now=50.0) is not None
    assert cache.get("tenant-1", now=101.0) is None
    assert cache.get("tenant-1", now=50.0) is None


def test_none_payload_is_cached():
    cache = SubscriptionSnapshotCache(redis_url=None)
    cache.set("tenant-1", None, cached_at=1.0)

    snapshot = cache.get("tenant-1", now=2.0)
    assert snapshot is not None
    assert snapshot.payload is None


def test_redis_backend_uses_versioned_key_and_retention():
    cache = SubscriptionSnapshotCache(redis_url="", retention_seconds=3600)
    fake = _FakeRedis()
    cache._redis = fake

    cache.set(" tenant-1 ", make_payload(max_beds=12), cached_at=10.0)

    key = f"subscriptions:v{CACHE_SCHEMA_VERSION}:tenant-1"
    assert fake.ttls[key] == 3600
    assert json.loads(fake.store[key])["payload"]["restrictions"]["maxBeds"] == 12
    assert cache.get("tenant-1").cached_at == 10.0

    cache.invalidate("tenant-1")
    assert cache.get("tenant-1") is None


def test_redis_errors_degrade_to_cache_miss():
    cache = SubscriptionSnapshotCache(redis_url="")
    cache._redis = _BrokenRedis()

    cache.set("tenant-1", make_payload())
    cache.invalidate("tenant-1")
    assert cache.get("tenant-1") is None


@pytest.mark.parametrize("raw", ["{not json", "[]", '{"schema_version": 1}', '{"schema_version": 99, "tenant_id": "t"}'])
def test_unreadable_redis_entry_is_a_cache_miss(raw, caplog):
    cache = SubscriptionSnapshotCache(redis_url="")
    fake = _FakeRedis()
    fake.store[f"subscriptions:v{CACHE_SCHEMA_VERSION}:tenant-1"] = raw
    cache._redis = fake

    assert cache.get("tenant-1") is None
    assert "Discarding unreadable subscription cache entry" in caplog.text


def test_service_re_resolves_past_corrupt_entry():
    cache = SubscriptionSnapshotCache(redis_url="")
    fake = _FakeRedis()
    fake.store[f"subscriptions:v{CACHE_SCHEMA_VERSION}:tenant-1"] = "{not json"
    cache._redis = fake
    service = SubscriptionAccessService(subscription_resolver=lambda tenant_id: make_payload(max_beds=5), cache=cache)

    access = service.access_for("tenant-1", "admin")

    assert access.remaining("beds") == 5
    assert json.loads(fake.store[f"subscriptions:v{CACHE_SCHEMA_VERSION}:tenant-1"])["payload"]["restrictions"]["maxBeds"] == 5


def test_unreachable_redis_falls_back_to_memory():
    cache = SubscriptionSnapshotCache(redis_url="not-a-redis-url")

    assert cache.is_shared is False
    cache.set("tenant-1", make_payload(), cached_at=1.0)
    assert cache.get("tenant-1", now=2.0) is not None


def test_tenant_id_is_required():
    cache = SubscriptionSnapshotCache(redis_url=None)

    with pytest.raises(ValueError):
        cache.get("  ")


def test_schema_version_mismatch_is_rejected():
    cache = SubscriptionSnapshotCache(redis_url=None)
    encoded = _encode_snapshot(cache.set("tenant-1", make_payload(), cached_at=1.0))
    encoded["schema_version"] = CACHE_SCHEMA_VERSION + 1

    with pytest.raises(ValueError, match="schema version"):
        _decode_snapshot(encoded)
