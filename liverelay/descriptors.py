# liverelay/descriptors.py
"""Normalized play-URL descriptors and the cache-first resolver they share."""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional

from .cache_store import CacheStore
from .errors import UpstreamUnavailable
from .single_flight import KeyedLock

log = logging.getLogger("liverelay.resolver")

KIND_MUXED = "av"
KIND_VIDEO = "video"
KIND_AUDIO = "audio"


@dataclass
class Variant:
    url: str
    quality: float = 0
    kind: str = KIND_MUXED
    # secondary rank, compared only when quality ties
    rank: float = 0
    codec: Optional[str] = None


@dataclass
class StreamDescriptor:
    provider: str
    id: str
    variants: list[Variant] = field(default_factory=list)
    fetched_at: float = field(default_factory=time.time)
    ttl: int = 0

    def best(self, kind: Optional[str] = None) -> Variant:
        candidates = [v for v in self.variants if kind is None or v.kind == kind]
        chosen = select_highest(candidates)
        if chosen is None:
            raise UpstreamUnavailable(f"Stream Unavailable, no {kind or 'playable'} variant")
        return chosen

    def to_json(self) -> dict:
        return asdict(self)

    @classmethod
    def from_json(cls, data: dict) -> "StreamDescriptor":
        variants = [Variant(**v) for v in data.get("variants") or []]
        return cls(
            provider=data["provider"],
            id=data["id"],
            variants=variants,
            fetched_at=data.get("fetched_at", 0.0),
            ttl=data.get("ttl", 0),
        )


def select_highest(variants: Iterable[Variant]) -> Optional[Variant]:
    """Sort ascending by quality and take the last; on ties the later one wins."""
    ordered = sorted(variants, key=lambda v: (v.quality, v.rank))
    return ordered[-1] if ordered else None


class DescriptorResolver:
    """
    Cache-first descriptor lookup. Subclasses implement ``fetch`` for their
    provider; the fetch runs at most once per key per process at a time.
    """

    provider = ""
    ttl = 0

    def __init__(self, store: CacheStore, locks: KeyedLock):
        self.store = store
        self.locks = locks

    def cache_key(self, ident: str) -> str:
        raise NotImplementedError

    async def fetch(self, ident: str) -> StreamDescriptor:
        raise NotImplementedError

    async def _cached(self, key: str) -> Optional[StreamDescriptor]:
        data = await self.store.get_json(key)
        if not data:
            return None
        try:
            return StreamDescriptor.from_json(data)
        except (KeyError, TypeError) as exc:
            log.warning("[RESOLVE] dropping unreadable descriptor key=%s err=%r", key, exc)
            return None

    async def resolve(self, ident: str) -> StreamDescriptor:
        key = self.cache_key(ident)
        cached = await self._cached(key)
        if cached is not None:
            return cached
        async with self.locks.hold(key):
            # another caller may have produced it while we waited
            cached = await self._cached(key)
            if cached is not None:
                return cached
            t0 = time.monotonic()
            descriptor = await self.fetch(ident)
            descriptor.ttl = self.ttl
            await self.store.set_json(key, descriptor.to_json(), self.ttl)
            log.info(
                "[RESOLVE] %s id=%s variants=%d elapsed=%.3fs",
                self.provider, ident, len(descriptor.variants), time.monotonic() - t0,
            )
            return descriptor

    async def invalidate(self, ident: str) -> None:
        key = self.cache_key(ident)
        await self.store.delete(key)
        log.info("[RESOLVE] invalidated %s id=%s", self.provider, ident)


def coerce_number(value: Any) -> float:
    if value is None:
        return 0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0
