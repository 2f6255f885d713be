# liverelay/segments.py
"""Segment proxy: opaque segment name -> origin URL -> bytes, with a short blob cache."""

import logging
import time
from typing import NamedTuple, Optional
from urllib.parse import urlsplit

import httpx

from . import config
from .cache_store import DEFAULT_CONTENT_TYPE, CacheStore
from .errors import NotFound, UpstreamUnavailable
from .hls import replace_last_component
from .providers import bilibili
from .single_flight import KeyedLock

log = logging.getLogger("liverelay.segments")


class Segment(NamedTuple):
    body: bytes
    content_type: str
    # access-log annotation: Hit / Missed / Direct
    note: str


class SegmentProxy:
    def __init__(self, store: CacheStore, http: httpx.AsyncClient, locks: KeyedLock,
                 blob_ttl: int = config.LIVE_SEGMENT_TTL):
        self.store = store
        self.http = http
        self.locks = locks
        self.blob_ttl = blob_ttl

    async def serve(self, channel: str, media: str, passthrough: bool = False) -> Segment:
        """
        ``passthrough`` marks a direct origin reference: served straight from
        origin without touching the blob cache. Relayed manifests never add
        it; players or playlist generators that want uncached segments append
        ``?direct=1`` to the segment URL themselves.
        """
        blob_key = bilibili.segment_blob_key(channel, media)
        if not passthrough:
            hit = await self._cached(blob_key)
            if hit is not None:
                return hit

        origin = await self.store.get(bilibili.mapping_key(channel, media))
        if not origin:
            raise NotFound("Stream Unavailable")
        url = replace_last_component(origin, media)

        if passthrough:
            body, content_type = await self._fetch(url)
            return Segment(body, content_type, f"<-- {urlsplit(url).netloc} Direct")

        async with self.locks.hold(blob_key):
            hit = await self._cached(blob_key)
            if hit is not None:
                return hit
            body, content_type = await self._fetch(url)
            await self.store.set_blob(blob_key, body, content_type, self.blob_ttl)
        return Segment(body, content_type, f"<-- {urlsplit(url).netloc} Missed")

    async def _cached(self, key: str) -> Optional[Segment]:
        blob = await self.store.get_blob(key)
        if blob is None:
            return None
        body, content_type = blob
        return Segment(body, content_type, "Hit")

    async def _fetch(self, url: str) -> tuple[bytes, str]:
        t0 = time.monotonic()
        try:
            r = await self.http.get(url, headers={"User-Agent": config.USER_AGENT})
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable("Stream Unavailable") from exc
        if r.status_code != 200:
            log.warning("[SEG] origin status=%s url=%s", r.status_code, url)
            raise UpstreamUnavailable("Stream Unavailable")
        log.debug("[SEG] fetched bytes=%d elapsed=%.3fs url=%s", len(r.content), time.monotonic() - t0, url)
        return r.content, r.headers.get("content-type") or DEFAULT_CONTENT_TYPE
