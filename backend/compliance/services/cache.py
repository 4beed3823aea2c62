"""
Content-Addressed Cache (Redis)

Key/value store for document processing outcomes, keyed two ways:

  doc:<document_id>[:user:<user_id>]   identity key, O(1) fast path
  hash:<sha256 of raw bytes>           content key, cross-document dedup
  hash:<sha256>:refs                   Redis set of the documents sharing it

Fail-open contract:
  The cache is an optimisation, never a source of truth. Every Redis
  error, timeout, or undecodable payload is logged at WARNING and
  reported as a miss (get) or False (set / delete). Losing the whole
  cache only costs extra OCR calls.

Reference sets use SADD / SREM so concurrent writers never overwrite each
other. Values are stored as JSON produced from pydantic models and validated
back into the requested model on read.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from typing import Any, Awaitable, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from compliance.core.exceptions import CacheError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

DEFAULT_TTL_SECONDS = 24 * 3600

_SWALLOWED = (CacheError, RedisError, OSError, asyncio.TimeoutError)


class CacheService:
    """
    Thin fail-open wrapper around a ``redis.asyncio.Redis`` client.

    Usage::

        cache = CacheService(redis.asyncio.from_url(settings.redis_url))
        await cache.set(CacheService.document_key(doc_id), entry, ttl=604800)
        entry = await cache.get(CacheService.document_key(doc_id), DocumentCacheEntry)
    """

    def __init__(
        self,
        client,
        *,
        enabled:         bool  = True,
        default_ttl:     int   = DEFAULT_TTL_SECONDS,
        timeout_seconds: float | None = 2.0,
    ) -> None:
        self._client      = client
        self._enabled     = enabled and client is not None
        self._default_ttl = default_ttl
        self._timeout     = timeout_seconds

    @property
    def enabled(self) -> bool:
        return self._enabled

    # -----------------------------------------------------------------------
    # Key helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def document_key(document_id: str, user_id: str | None = None) -> str:
        if user_id:
            return f"doc:{document_id}:user:{user_id}"
        return f"doc:{document_id}"

    @staticmethod
    def content_hash_key(content_hash: str) -> str:
        return f"hash:{content_hash}"

    @staticmethod
    def content_refs_key(content_hash: str) -> str:
        return f"hash:{content_hash}:refs"

    @staticmethod
    def compute_content_hash(content: bytes) -> str:
        """SHA-256 hex digest of the raw bytes."""
        return hashlib.sha256(content).hexdigest()

    # -----------------------------------------------------------------------
    # Encoding
    # -----------------------------------------------------------------------

    @staticmethod
    def _encode(value: Any) -> str:
        if isinstance(value, BaseModel):
            return value.model_dump_json()
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError) as exc:
            raise CacheError(f"Value is not JSON serialisable: {exc}") from exc

    @staticmethod
    def _decode(raw: str | bytes, model: type[M] | None) -> Any:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            if model is not None:
                return model.model_validate_json(raw)
            return json.loads(raw)
        except (PydanticValidationError, ValueError) as exc:
            raise CacheError(f"Undecodable cache payload: {exc}") from exc

    async def _call(self, awaitable: Awaitable[Any]) -> Any:
        if self._timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self._timeout)

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    async def get(self, key: str, model: type[M] | None = None) -> Any:
        """Return the cached value (validated into ``model`` if given) or None on miss."""
        if not self._enabled:
            return None
        try:
            raw = await self._call(self._client.get(key))
            if raw is None:
                logger.debug("Cache miss | key=%s", key)
                return None
            value = self._decode(raw, model)
            logger.debug("Cache hit | key=%s", key)
            return value
        except _SWALLOWED as exc:
            logger.warning("Cache get failed | key=%s error=%s: %s", key, type(exc).__name__, exc)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if not self._enabled:
            return False
        try:
            payload = self._encode(value)
            await self._call(self._client.set(key, payload, ex=ttl or self._default_ttl))
            logger.debug("Cache set | key=%s ttl=%s", key, ttl or self._default_ttl)
            return True
        except _SWALLOWED as exc:
            logger.warning("Cache set failed | key=%s error=%s: %s", key, type(exc).__name__, exc)
            return False

    async def delete(self, key: str) -> bool:
        if not self._enabled:
            return False
        try:
            await self._call(self._client.delete(key))
            logger.debug("Cache delete | key=%s", key)
            return True
        except _SWALLOWED as exc:
            logger.warning("Cache delete failed | key=%s error=%s: %s", key, type(exc).__name__, exc)
            return False

    async def exists(self, key: str) -> bool:
        if not self._enabled:
            return False
        try:
            return bool(await self._call(self._client.exists(key)))
        except _SWALLOWED as exc:
            logger.warning("Cache exists failed | key=%s error=%s: %s", key, type(exc).__name__, exc)
            return False

    # -----------------------------------------------------------------------
    # Reference sets
    # -----------------------------------------------------------------------

    async def add_reference(self, key: str, member: str, ttl: int | None = None) -> bool:
        """SADD ``member`` to the set at ``key`` and refresh its TTL."""
        if not self._enabled:
            return False
        try:
            await self._call(self._client.sadd(key, member))
            await self._call(self._client.expire(key, ttl or self._default_ttl))
            logger.debug("Cache reference added | key=%s member=%s", key, member)
            return True
        except _SWALLOWED as exc:
            logger.warning("Cache reference add failed | key=%s error=%s: %s", key, type(exc).__name__, exc)
            return False

    async def remove_reference(self, key: str, member: str) -> int | None:
        """SREM ``member`` and return how many references remain, or None if Redis failed."""
        if not self._enabled:
            return None
        try:
            await self._call(self._client.srem(key, member))
            remaining = int(await self._call(self._client.scard(key)))
            logger.debug("Cache reference removed | key=%s member=%s remaining=%d", key, member, remaining)
            return remaining
        except _SWALLOWED as exc:
            logger.warning("Cache reference remove failed | key=%s error=%s: %s", key, type(exc).__name__, exc)
            return None

    async def references(self, key: str) -> set[str]:
        if not self._enabled:
            return set()
        try:
            members = await self._call(self._client.smembers(key))
        except _SWALLOWED as exc:
            logger.warning("Cache references failed | key=%s error=%s: %s", key, type(exc).__name__, exc)
            return set()
        return {m.decode("utf-8") if isinstance(m, bytes) else m for m in members}

    async def delete_by_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (SCAN-based). Returns the count deleted."""
        if not self._enabled:
            return 0
        deleted = 0
        try:
            async for key in self._client.scan_iter(match=pattern, count=500):
                await self._call(self._client.delete(key))
                deleted += 1
        except _SWALLOWED as exc:
            logger.warning(
                "Cache pattern delete failed | pattern=%s deleted=%d error=%s: %s",
                pattern, deleted, type(exc).__name__, exc,
            )
        return deleted

    async def ping(self) -> bool:
        if not self._enabled:
            return False
        try:
            return bool(await self._call(self._client.ping()))
        except _SWALLOWED as exc:
            logger.warning("Cache ping failed | error=%s", exc)
            return False

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except _SWALLOWED as exc:
            logger.warning("Cache close failed | error=%s", exc)
