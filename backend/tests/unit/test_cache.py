"""
Unit Tests: CacheService
════════════════════════
Fail-open behaviour over the FakeRedis client from conftest.py.

Coverage targets:
  ✅ set / get round trip through a pydantic model
  ✅ TTL forwarded as EX
  ✅ Backend errors degrade to miss / False, never raise
  ✅ Undecodable payloads are treated as a miss
  ✅ Disabled cache: every read misses, every write returns False
  ✅ Reference sets: SADD / SREM counts, TTL refresh, fail-open
  ✅ Pattern delete, key helpers, content hash
"""

from __future__ import annotations

import hashlib

import pytest

from compliance.models.base import utcnow
from compliance.schemas.cache import CachedOutcome, DocumentCacheEntry, ProcessedDocument
from compliance.services.cache import CacheService


def _entry(document_id: str = "doc-1") -> DocumentCacheEntry:
    return DocumentCacheEntry(
        document_id=document_id,
        status=CachedOutcome.PROCESSED,
        processed_at=utcnow(),
        result=ProcessedDocument(extracted_text="hello", confidence_score=0.8, page_count=1),
        content_hash="ab" * 32,
    )


@pytest.mark.unit
class TestCacheService:

    async def test_round_trip_with_model(self, cache):
        entry = _entry()

        assert await cache.set("doc:doc-1", entry, ttl=60) is True
        loaded = await cache.get("doc:doc-1", DocumentCacheEntry)

        assert loaded == entry

    async def test_ttl_is_sent_as_ex(self, cache, fake_redis):
        await cache.set("k", {"a": 1}, ttl=86400)

        assert fake_redis.ttls["k"] == 86400

    async def test_default_ttl_when_none_given(self, cache, fake_redis):
        await cache.set("k", {"a": 1})

        assert fake_redis.ttls["k"] == 604800

    async def test_missing_key_is_none(self, cache):
        assert await cache.get("nope") is None

    async def test_backend_failure_degrades_to_miss(self, cache, fake_redis):
        await cache.set("k", {"a": 1})
        fake_redis.fail = True

        assert await cache.get("k") is None
        assert await cache.set("k", {"a": 2}) is False
        assert await cache.delete("k") is False
        assert await cache.exists("k") is False
        assert await cache.ping() is False

    async def test_undecodable_payload_is_a_miss(self, cache, fake_redis):
        fake_redis.store["doc:bad"] = "{not json"

        assert await cache.get("doc:bad", DocumentCacheEntry) is None

    async def test_schema_mismatch_is_a_miss(self, cache, fake_redis):
        fake_redis.store["doc:old"] = '{"unexpected": true}'

        assert await cache.get("doc:old", DocumentCacheEntry) is None

    async def test_disabled_cache_never_touches_backend(self, fake_redis):
        cache = CacheService(fake_redis, enabled=False)

        assert await cache.set("k", {"a": 1}) is False
        assert await cache.get("k") is None
        assert fake_redis.store == {}

    async def test_delete_and_exists(self, cache):
        await cache.set("k", "v")
        assert await cache.exists("k") is True

        assert await cache.delete("k") is True
        assert await cache.exists("k") is False

    async def test_delete_by_pattern(self, cache, fake_redis):
        for key in ("doc:1", "doc:2", "hash:abc"):
            await cache.set(key, "v")

        deleted = await cache.delete_by_pattern("doc:*")

        assert deleted == 2
        assert list(fake_redis.store) == ["hash:abc"]

    async def test_reference_set_add_and_remove(self, cache, fake_redis):
        key = CacheService.content_refs_key("ff00")

        assert await cache.add_reference(key, "d1", ttl=60)
        assert await cache.add_reference(key, "d2", ttl=60)
        assert await cache.add_reference(key, "d1", ttl=60)

        assert await cache.references(key) == {"d1", "d2"}
        assert fake_redis.ttls[key] == 60
        assert await cache.remove_reference(key, "d1") == 1
        assert await cache.remove_reference(key, "d2") == 0
        assert key not in fake_redis.sets

    async def test_reference_set_fails_open(self, cache, fake_redis):
        key = CacheService.content_refs_key("ff00")
        fake_redis.fail = True

        assert await cache.add_reference(key, "d1") is False
        assert await cache.remove_reference(key, "d1") is None
        assert await cache.references(key) == set()

    def test_key_helpers(self):
        assert CacheService.document_key("d1") == "doc:d1"
        assert CacheService.document_key("d1", "u9") == "doc:d1:user:u9"
        assert CacheService.content_hash_key("ff00") == "hash:ff00"
        assert CacheService.content_refs_key("ff00") == "hash:ff00:refs"

    def test_content_hash_is_sha256(self):
        data = b"some bytes"
        assert CacheService.compute_content_hash(data) == hashlib.sha256(data).hexdigest()
