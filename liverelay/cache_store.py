# liverelay/cache_store.py
"""
String-keyed cache over Redis.

Values are JSON text or ``data:<mime>;base64,<payload>`` blobs. Store errors
never fail a request: they are logged and reported as a miss, so the caller
loses caching and deduplication for that access but keeps working.
"""

import base64
import binascii
import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from . import config
from .errors import CacheStoreFailure

log = logging.getLogger("liverelay.cache")

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_STORE_ERRORS = (RedisError, OSError)


def encode_blob(data: bytes, content_type: Optional[str]) -> str:
    mime = content_type or DEFAULT_CONTENT_TYPE
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_blob(value: str) -> Optional[tuple[bytes, str]]:
    header, sep, payload = value.partition(";base64,")
    if not sep or not header.startswith("data:"):
        return None
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return None
    return data, header[len("data:"):] or DEFAULT_CONTENT_TYPE


class CacheStore:
    def __init__(self, url: str = config.REDIS_URL, client: Any = None):
        self.url = url
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                socket_timeout=config.REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=config.REDIS_SOCKET_TIMEOUT,
            )
        return self._client

    # ── lifecycle ────────────────────────────────────────────────────────────
    async def connect(self) -> None:
        try:
            await self.client.ping()
        except _STORE_ERRORS as exc:
            raise CacheStoreFailure(f"redis ping failed url={self.url}: {exc!r}") from exc
        log.info("[CACHE] connected url=%s", self.url)

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except _STORE_ERRORS as exc:
            log.warning("[CACHE] close failed err=%r", exc)
        self._client = None
        log.info("[CACHE] closed")

    async def healthy(self) -> bool:
        try:
            return bool(await self.client.ping())
        except _STORE_ERRORS:
            return False

    # ── primitives ───────────────────────────────────────────────────────────
    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except _STORE_ERRORS as exc:
            log.warning("[CACHE] get failed key=%s err=%r; treating as miss", key, exc)
            return None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Write ``value``; with ``ttl`` the write and its expiry are one command."""
        try:
            await self.client.set(key, value, ex=ttl or None)
            return True
        except _STORE_ERRORS as exc:
            log.warning("[CACHE] set failed key=%s err=%r", key, exc)
            return False

    async def set_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Returns True only when this call created the key."""
        try:
            return bool(await self.client.set(key, value, ex=ttl or None, nx=True))
        except _STORE_ERRORS as exc:
            log.warning("[CACHE] set-nx failed key=%s err=%r", key, exc)
            return False

    async def expire(self, key: str, seconds: int) -> bool:
        try:
            return bool(await self.client.expire(key, seconds))
        except _STORE_ERRORS as exc:
            log.warning("[CACHE] expire failed key=%s err=%r", key, exc)
            return False

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.client.delete(key))
        except _STORE_ERRORS as exc:
            log.warning("[CACHE] delete failed key=%s err=%r", key, exc)
            return False

    # ── typed helpers ────────────────────────────────────────────────────────
    async def get_json(self, key: str) -> Any:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            log.warning("[CACHE] discarding invalid JSON key=%s", key)
            return None

    async def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return await self.set(key, json.dumps(value, ensure_ascii=False), ttl)

    async def get_blob(self, key: str) -> Optional[tuple[bytes, str]]:
        raw = await self.get(key)
        if raw is None:
            return None
        blob = decode_blob(raw)
        if blob is None:
            log.warning("[CACHE] discarding malformed blob key=%s", key)
        return blob

    async def set_blob(self, key: str, data: bytes, content_type: Optional[str], ttl: Optional[int] = None) -> bool:
        return await self.set(key, encode_blob(data, content_type), ttl)
