# liverelay/relay.py
"""
Relay of origin playlists whose media lines are plain relative names.

The manifest is returned byte-for-byte. It is served under
``/play/live/<provider>/<channel>/index.m3u8``, so players resolve each
relative segment name against that path and land on the segment proxy route.
Every name is recorded as a mapping to the origin playlist URL it came from.
"""

import logging
import time
from typing import NamedTuple
from urllib.parse import urlsplit

import httpx

from . import config
from .cache_store import CacheStore
from .errors import UpstreamUnavailable
from .hls import parse_playlist
from .providers import bilibili
from .providers.bilibili import BiliResolver

log = logging.getLogger("liverelay.relay")


class Manifest(NamedTuple):
    body: bytes
    origin_host: str


class ManifestRelay:
    def __init__(self, store: CacheStore, http: httpx.AsyncClient, resolver: BiliResolver,
                 mapping_ttl: int = config.BILI_MAPPING_TTL):
        self.store = store
        self.http = http
        self.resolver = resolver
        self.mapping_ttl = mapping_ttl

    async def relay(self, channel: str) -> Manifest:
        descriptor = await self.resolver.resolve(channel)
        url = descriptor.best().url
        host = urlsplit(url).netloc

        t0 = time.monotonic()
        try:
            r = await self.http.get(url, headers={"User-Agent": config.USER_AGENT})
        except httpx.HTTPError as exc:
            await self.resolver.invalidate(channel)
            raise UpstreamUnavailable("Stream Unavailable, failed to fetch stream") from exc
        if r.status_code != 200:
            # signed play URLs rotate; force a fresh descriptor next time
            await self.resolver.invalidate(channel)
            log.warning("[RELAY] origin status=%s channel=%s host=%s", r.status_code, channel, host)
            raise UpstreamUnavailable("Stream Unavailable, failed to fetch stream")

        playlist = parse_playlist(r.text)
        names = list(playlist.media)
        if playlist.map_uri:
            names.append(playlist.map_uri)
        for name in names:
            await self.store.set(bilibili.mapping_key(channel, name), url, self.mapping_ttl)

        log.info(
            "[RELAY] channel=%s host=%s media=%d map=%s target=%ss allow_cache=%s elapsed=%.3fs",
            channel, host, len(playlist.media), playlist.map_uri or "-",
            playlist.target_duration, playlist.allow_cache, time.monotonic() - t0,
        )
        return Manifest(r.content, host)
