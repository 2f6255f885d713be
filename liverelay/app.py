# liverelay/app.py
# HTTP surface: live manifests, segments, remuxed sequences, artwork, subscriptions.

import time
from typing import Optional

import httpx
from fastapi import FastAPI, Request, Response
from starlette.responses import PlainTextResponse

from . import config
from .cache_store import CacheStore
from .errors import CacheStoreFailure, NotFound, RelayError, UpstreamUnavailable
from .logs import configure_logging, format_elapsed
from .meta import BiliMeta, strip_extension
from .providers.bilibili import BiliResolver
from .providers.youtube import Extractor, YouTubeResolver, extract_info
from .relay import ManifestRelay
from .remux import DualTrackPipeline, Remuxer
from .segments import SegmentProxy
from .single_flight import KeyedLock
from .subscribe import DEFAULT_CHANNELS, channels_from_rooms, render_m3u, render_xmltv

log = configure_logging()

MANIFEST_CONTENT_TYPE = "text/vnd.apple.mpegurl"


class Services:
    """Everything a request needs, built once per process and torn down on shutdown."""

    def __init__(
        self,
        store: CacheStore,
        http: httpx.AsyncClient,
        locks: Optional[KeyedLock] = None,
        remuxer: Optional[Remuxer] = None,
        yt_extractor: Extractor = extract_info,
        tmp_dir: str = config.REMUX_TMP_DIR,
    ):
        self.store = store
        self.http = http
        self.locks = locks or KeyedLock()
        self.bili = BiliResolver(store, self.locks, http)
        self.yt = YouTubeResolver(store, self.locks, yt_extractor)
        self.relay = ManifestRelay(store, http, self.bili)
        self.segments = SegmentProxy(store, http, self.locks)
        self.remux = DualTrackPipeline(store, http, self.locks, self.yt, remuxer, tmp_dir)
        self.meta = BiliMeta(store, http, self.locks)

    @classmethod
    def from_config(cls) -> "Services":
        timeout = httpx.Timeout(config.HTTP_TIMEOUT, connect=config.HTTP_CONNECT_TIMEOUT)
        http = httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        return cls(CacheStore(config.REDIS_URL), http)

    async def aclose(self) -> None:
        await self.http.aclose()
        await self.store.close()


def _services(request: Request) -> Services:
    return request.app.state.services


def _base_url(request: Request) -> str:
    return config.SERVICE_URL or str(request.base_url).rstrip("/")


def _note(request: Request, note: str) -> None:
    request.state.log_note = note


def build_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI()
    app.state.services = services

    @app.on_event("startup")
    async def _startup() -> None:
        if app.state.services is None:
            app.state.services = Services.from_config()
        try:
            await app.state.services.store.connect()
        except CacheStoreFailure as exc:
            log.warning("[CACHE] %s; continuing without cache until it comes back", exc.message)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        if app.state.services is not None:
            await app.state.services.aclose()
            app.state.services = None

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        method, path = request.method, request.url.path
        request.state.log_note = None
        log.info("[HTTP] <-- %s %s", method, path)
        t0 = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            log.exception("[HTTP] unhandled error %s %s", method, path)
            response = PlainTextResponse("Stream Unavailable", status_code=500)
        note = request.state.log_note
        log.info(
            "[HTTP] --> %s %s %s %s%s",
            method, path, response.status_code, format_elapsed(time.monotonic() - t0),
            f" {note}" if note else "",
        )
        return response

    @app.exception_handler(RelayError)
    async def _relay_error(request: Request, exc: RelayError):
        log.info("[HTTP] %s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    # ------------------------------ play ------------------------------------
    @app.get("/play/live/{provider}/{channel}/index.m3u8")
    async def play_manifest(provider: str, channel: str, request: Request):
        svc = _services(request)
        if provider == "bili":
            manifest = await svc.relay.relay(channel)
        elif provider == "yt":
            manifest = await svc.remux.manifest(channel, _base_url(request))
        else:
            raise NotFound("Unknown provider")
        _note(request, f"<-- {manifest.origin_host} Direct")
        return Response(content=manifest.body, media_type=MANIFEST_CONTENT_TYPE)

    @app.get("/play/live/yt/{video}/sq/{seq}")
    async def play_yt_sequence(video: str, seq: str, request: Request):
        segment = await _services(request).remux.serve(video, strip_extension(seq))
        _note(request, segment.note)
        return Response(content=segment.body, media_type=segment.content_type)

    @app.get("/play/live/bili/{channel}/{media}")
    async def play_bili_segment(channel: str, media: str, request: Request, direct: bool = False):
        segment = await _services(request).segments.serve(channel, media, passthrough=direct)
        _note(request, segment.note)
        return Response(content=segment.body, media_type=segment.content_type)

    # ------------------------------ meta ------------------------------------
    @app.get("/meta/live/bili/cover/{room_id}")
    async def meta_cover(room_id: str, request: Request):
        body, content_type = await _services(request).meta.cover(strip_extension(room_id))
        return Response(content=body, media_type=content_type)

    @app.get("/meta/live/bili/user_avatar/{room_id}")
    async def meta_avatar(room_id: str, request: Request):
        body, content_type = await _services(request).meta.avatar(strip_extension(room_id))
        return Response(content=body, media_type=content_type)

    # --------------------------- subscribe ----------------------------------
    async def _channels(request: Request) -> list[dict]:
        try:
            rooms = await _services(request).meta.room_list()
        except UpstreamUnavailable as exc:
            log.warning("[META] room list unavailable, using defaults: %s", exc.message)
            return DEFAULT_CHANNELS
        return channels_from_rooms(rooms) or DEFAULT_CHANNELS

    @app.get("/subscribe/bili/live.m3u")
    async def subscribe_m3u(request: Request):
        text = render_m3u(await _channels(request), _base_url(request))
        return PlainTextResponse(text)

    @app.get("/subscribe/bili/guide.xml")
    async def subscribe_guide(request: Request):
        text = render_xmltv(await _channels(request), _base_url(request))
        return PlainTextResponse(text)

    @app.get("/healthz")
    async def health(request: Request):
        return {"ok": True, "cache": await _services(request).store.healthy()}

    return app


app = build_app()
