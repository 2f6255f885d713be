# liverelay/providers/bilibili.py
"""Bilibili live play info -> StreamDescriptor."""

import logging
from typing import Optional

import httpx

from .. import config
from ..cache_store import CacheStore
from ..descriptors import DescriptorResolver, StreamDescriptor, Variant, coerce_number
from ..errors import UpstreamUnavailable
from ..single_flight import KeyedLock

log = logging.getLogger("liverelay.bili")

PROVIDER = "bili"

API_BASE = "https://api.live.bilibili.com"
PLAY_INFO_PATH = "/xlive/web-room/v2/index/getRoomPlayInfo"
PLAY_INFO_QUERY = {
    "protocol": "1",
    "format": "2",
    "codec": "0,1,2",
    "qn": "30000",
    "platform": "web",
    "ptype": "8",
    "dolby": "5",
    "panorama": "1",
    "hdr_type": "0,1",
}


def descriptor_key(room_id: str) -> str:
    return f"bili:xapi:{room_id}:playUrl"


def mapping_key(room_id: str, media: str) -> str:
    return f"bili:{room_id}:{media}:durl"


def segment_blob_key(room_id: str, media: str) -> str:
    return f"bili:live:cache:media:{room_id}:{media}"


def auth_headers() -> dict[str, str]:
    h = {"User-Agent": config.USER_AGENT}
    if config.BILI_SESSDATA:
        h["Cookie"] = f"SESSDATA={config.BILI_SESSDATA}"
    return h


def _pick_stream(streams: list[dict]) -> Optional[dict]:
    for stream in streams:
        if isinstance(stream, dict) and stream.get("protocol_name") == "http_hls":
            return stream
    return streams[0] if streams and isinstance(streams[0], dict) else None


def parse_play_info(room_id: str, payload: dict) -> StreamDescriptor:
    """Flatten the nested playurl_info shape into ranked variants."""
    if not isinstance(payload, dict) or payload.get("code") != 0:
        code = payload.get("code") if isinstance(payload, dict) else None
        raise UpstreamUnavailable(f"Stream Unavailable, play info code={code}")
    data = payload.get("data") or {}
    playurl = (data.get("playurl_info") or {}).get("playurl") or {}
    stream = _pick_stream(playurl.get("stream") or [])
    formats = (stream or {}).get("format") or []
    if not formats:
        raise UpstreamUnavailable("Stream Unavailable, no durl")

    variants: list[Variant] = []
    for codec in formats[0].get("codec") or []:
        url_info = codec.get("url_info") or []
        if not url_info or not codec.get("base_url"):
            continue
        first = url_info[0]
        variants.append(Variant(
            url=f"{first.get('host', '')}{codec['base_url']}{first.get('extra', '')}",
            quality=coerce_number(codec.get("current_qn")),
            codec=codec.get("codec_name"),
        ))
    if not variants:
        raise UpstreamUnavailable("Stream Unavailable, no durl")
    return StreamDescriptor(provider=PROVIDER, id=str(room_id), variants=variants)


class BiliResolver(DescriptorResolver):
    provider = PROVIDER
    ttl = config.BILI_DESCRIPTOR_TTL

    def __init__(self, store: CacheStore, locks: KeyedLock, http: httpx.AsyncClient):
        super().__init__(store, locks)
        self.http = http

    def cache_key(self, ident: str) -> str:
        return descriptor_key(ident)

    async def fetch(self, ident: str) -> StreamDescriptor:
        params = {"room_id": ident, **PLAY_INFO_QUERY}
        try:
            r = await self.http.get(f"{API_BASE}{PLAY_INFO_PATH}", params=params, headers=auth_headers())
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Stream Unavailable, play info request failed: {exc}") from exc
        if r.status_code != 200:
            raise UpstreamUnavailable(f"Failed to fetch BiliBili live room play url, status: {r.status_code}")
        try:
            payload = r.json()
        except ValueError as exc:
            raise UpstreamUnavailable("Stream Unavailable, play info is not JSON") from exc
        return parse_play_info(ident, payload)
