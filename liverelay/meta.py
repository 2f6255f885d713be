# liverelay/meta.py
"""Room list, cover and avatar passthrough for the Bilibili subscription lists."""

import logging
import time
from typing import Any

import httpx

from . import config
from .cache_store import DEFAULT_CONTENT_TYPE, CacheStore
from .errors import NotFound, UpstreamUnavailable
from .providers.bilibili import API_BASE
from .single_flight import KeyedLock

log = logging.getLogger("liverelay.meta")

ROOM_LIST_KEY = "bili:live:room:list"
ROOM_LIST_PATH = "/xlive/web-interface/v1/second/getList"
ROOM_INFO_PATH = "/room/v1/Room/get_info"


def cover_key(room_id: str) -> str:
    return f"bili:{room_id}:cover"


def avatar_url_key(room_id: Any) -> str:
    return f"bili:user_avatar:{room_id}"


def avatar_blob_key(room_id: str) -> str:
    return f"bili:user_avatar:{room_id}:cache"


def strip_extension(ident: str) -> str:
    return ident.split(".")[0]


class BiliMeta:
    def __init__(self, store: CacheStore, http: httpx.AsyncClient, locks: KeyedLock):
        self.store = store
        self.http = http
        self.locks = locks

    async def room_list(self) -> list[dict]:
        cached = await self.store.get_json(ROOM_LIST_KEY)
        if cached is not None:
            return cached
        async with self.locks.hold(ROOM_LIST_KEY):
            cached = await self.store.get_json(ROOM_LIST_KEY)
            if cached is not None:
                return cached
            t0 = time.monotonic()
            rooms: list[dict] = []
            for page in range(1, config.BILI_ROOM_LIST_PAGES + 1):
                rooms.extend(await self._room_page(page))
            for room in rooms:
                if room.get("roomid") and room.get("face"):
                    await self.store.set(avatar_url_key(room["roomid"]), room["face"], config.ROOM_LIST_TTL)
            await self.store.set_json(ROOM_LIST_KEY, rooms, config.ROOM_LIST_TTL)
            log.info("[META] room list rooms=%d elapsed=%.3fs", len(rooms), time.monotonic() - t0)
            return rooms

    async def _room_page(self, page: int) -> list[dict]:
        params = {
            "platform": "web",
            "parent_area_id": config.BILI_PARENT_AREA_ID,
            "area_id": config.BILI_AREA_ID,
            "sort_type": "sort_type_291",
            "page": page,
        }
        try:
            r = await self.http.get(f"{API_BASE}{ROOM_LIST_PATH}", params=params,
                                    headers={"User-Agent": config.USER_AGENT})
            payload = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailable(f"Failed to fetch BiliBili live room list page={page}") from exc
        if r.status_code != 200 or payload.get("code") != 0:
            raise UpstreamUnavailable(
                f"Failed to fetch BiliBili live room list, code: {payload.get('code')} status: {r.status_code}"
            )
        return list((payload.get("data") or {}).get("list") or [])

    async def cover(self, room_id: str) -> tuple[bytes, str]:
        key = cover_key(room_id)
        hit = await self.store.get_blob(key)
        if hit is not None:
            return hit
        async with self.locks.hold(key):
            hit = await self.store.get_blob(key)
            if hit is not None:
                return hit
            try:
                r = await self.http.get(f"{API_BASE}{ROOM_INFO_PATH}", params={"room_id": room_id},
                                        headers={"User-Agent": config.USER_AGENT})
                payload = r.json() if r.status_code == 200 else {}
            except (httpx.HTTPError, ValueError) as exc:
                raise UpstreamUnavailable("Not Found", status_code=404) from exc
            data = payload.get("data") if payload.get("code") == 0 else None
            if not data or not data.get("user_cover"):
                raise UpstreamUnavailable("Not Found", status_code=404)
            body, content_type = await self._image(data["user_cover"])
            await self.store.set_blob(key, body, content_type, config.COVER_TTL)
            return body, content_type

    async def avatar(self, room_id: str) -> tuple[bytes, str]:
        image_url = await self.store.get(avatar_url_key(room_id))
        if not image_url:
            raise NotFound()
        key = avatar_blob_key(room_id)
        hit = await self.store.get_blob(key)
        if hit is not None:
            return hit
        async with self.locks.hold(key):
            hit = await self.store.get_blob(key)
            if hit is not None:
                return hit
            body, content_type = await self._image(image_url)
            await self.store.set_blob(key, body, content_type, config.AVATAR_TTL)
            return body, content_type

    async def _image(self, url: str) -> tuple[bytes, str]:
        try:
            r = await self.http.get(url, headers={"User-Agent": config.USER_AGENT})
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable("Not Found", status_code=404) from exc
        if r.status_code != 200:
            log.info("[META] image status=%s url=%s", r.status_code, url)
            raise UpstreamUnavailable("Not Found", status_code=404)
        return r.content, r.headers.get("content-type") or DEFAULT_CONTENT_TYPE
