# liverelay/providers/youtube.py
"""YouTube live formats (via yt-dlp) -> StreamDescriptor with split tracks."""

import logging
from typing import Any, Callable, Optional

import anyio
import yt_dlp
from yt_dlp.utils import DownloadError

from .. import config
from ..cache_store import CacheStore
from ..descriptors import (
    KIND_AUDIO,
    KIND_VIDEO,
    DescriptorResolver,
    StreamDescriptor,
    Variant,
    coerce_number,
)
from ..errors import UpstreamUnavailable
from ..single_flight import KeyedLock

log = logging.getLogger("liverelay.yt")

PROVIDER = "yt"
WATCH_URL = "https://www.youtube.com/watch?v={video}"

Extractor = Callable[[str], dict]


def descriptor_key(video: str) -> str:
    return f"yt:{video}:info"


def audio_key(video: str) -> str:
    return f"yt:{video}:audio"


def sequence_key(video: str, seq: str) -> str:
    return f"yt:{video}:seq:{seq}"


def remuxed_blob_key(video: str, seq: str) -> str:
    return f"yt:live:cache:seq:{video}:{seq}"


def _ydl_options() -> dict:
    opts: dict[str, Any] = {
        "quiet": True,
        "noprogress": True,
        "skip_download": True,
        "logger": log,
        # live adaptive (audio-only) formats are dropped unless incomplete
        # formats are allowed; the remux pipeline needs their sq= selector
        "extractor_args": {"youtube": {"formats": ["incomplete"]}},
    }
    if config.YT_COOKIES_FILE:
        opts["cookiefile"] = config.YT_COOKIES_FILE
    return opts


def extract_info(url: str) -> dict:
    with yt_dlp.YoutubeDL(_ydl_options()) as ydl:
        info = ydl.extract_info(url, download=False)
    if not info:
        raise DownloadError(f"yt_dlp returned no info for {url}")
    return ydl.sanitize_info(info)


def _has(codec: Optional[str]) -> bool:
    return bool(codec) and codec != "none"


def parse_formats(video: str, info: dict) -> StreamDescriptor:
    """
    Keep only what the relay needs: HLS video playlists (one media line per
    ``/sq/N/`` sequence) and audio-only formats that accept an ``sq`` selector.
    """
    variants: list[Variant] = []
    for fmt in info.get("formats") or []:
        url = fmt.get("url")
        if not url:
            continue
        vcodec, acodec = fmt.get("vcodec"), fmt.get("acodec")
        protocol = fmt.get("protocol") or ""
        if _has(vcodec) and protocol.startswith("m3u8"):
            variants.append(Variant(
                url=url,
                quality=coerce_number(fmt.get("height")),
                rank=coerce_number(fmt.get("tbr")),
                kind=KIND_VIDEO,
                codec=vcodec,
            ))
        elif _has(acodec) and not _has(vcodec):
            variants.append(Variant(
                url=url,
                quality=coerce_number(fmt.get("abr")),
                rank=coerce_number(fmt.get("tbr")),
                kind=KIND_AUDIO,
                codec=acodec,
            ))
    return StreamDescriptor(provider=PROVIDER, id=video, variants=variants)


class YouTubeResolver(DescriptorResolver):
    provider = PROVIDER
    ttl = config.YT_DESCRIPTOR_TTL

    def __init__(self, store: CacheStore, locks: KeyedLock, extractor: Extractor = extract_info):
        super().__init__(store, locks)
        self.extractor = extractor

    def cache_key(self, ident: str) -> str:
        return descriptor_key(ident)

    async def fetch(self, ident: str) -> StreamDescriptor:
        url = WATCH_URL.format(video=ident)
        try:
            info = await anyio.to_thread.run_sync(self.extractor, url)
        except DownloadError as exc:
            raise UpstreamUnavailable(f"Failed to fetch YouTube live room play url: {exc}") from exc
        if not info.get("is_live", True):
            log.info("[RESOLVE] yt id=%s is not live (live_status=%s)", ident, info.get("live_status"))
        return parse_formats(ident, info)
