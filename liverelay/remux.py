# liverelay/remux.py
"""
Dual-track live relay for providers that publish audio and video separately.

Manifest: the origin video playlist is rewritten so every ``/sq/N/`` media
line points at this service's ``/play/live/yt/<video>/sq/N.ts`` route.

Segment: the video chunk and the matching audio chunk are fetched, written
to a per-request scratch directory, stream-copied into one MPEG-TS by ffmpeg
with original timestamps kept, and the scratch directory is removed on every
exit path.

The audio URL is written once per video (set-if-absent) and lives as long as
the descriptor. Its signature can lapse first; segments then answer 500
until both keys expire and a fresh descriptor is resolved.
"""

import asyncio
import contextlib
import logging
import os
import tempfile
import time
from typing import Optional, Protocol
from urllib.parse import urljoin, urlsplit

import anyio
import httpx

from . import config
from .cache_store import CacheStore
from .descriptors import KIND_AUDIO, KIND_VIDEO
from .errors import NotFound, RemuxFailure, UpstreamUnavailable
from .hls import extract_sequence_id, is_media_line, rewrite_media_lines
from .providers import youtube
from .providers.youtube import YouTubeResolver
from .relay import Manifest
from .segments import Segment
from .single_flight import KeyedLock

log = logging.getLogger("liverelay.remux")

TS_CONTENT_TYPE = "video/mp2t"


# ---------------------- ffmpeg helpers ---------------------------------
def _ff_loglvl() -> str:
    return "info" if config.DEBUG_FFMPEG else "warning"


async def _pump_stderr(name: str, stream: Optional[asyncio.StreamReader], tail: list[str]):
    """Log ffmpeg stderr lines in real time, keeping the last few for errors."""
    if not stream:
        return
    while True:
        line = await stream.readline()
        if not line:
            break
        s = line.decode(errors="ignore").rstrip()
        if s:
            log.warning("[%s] %s", name, s)
            tail.append(s)
            del tail[:-5]


class Remuxer(Protocol):
    async def remux(self, video_path: str, audio_path: str, output_path: str) -> None: ...


class FFmpegRemuxer:
    def __init__(self, binary: str = config.FFMPEG_BIN, timeout: float = config.REMUX_TIMEOUT):
        self.binary = binary
        self.timeout = timeout

    def command(self, video_path: str, audio_path: str, output_path: str) -> list[str]:
        return [
            self.binary, "-nostdin", "-hide_banner", "-loglevel", _ff_loglvl(), "-y",
            "-i", video_path,
            "-i", audio_path,
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "copy",
            "-c:a", "copy",
            "-copyts",
            "-f", "mpegts",
            output_path,
        ]

    async def remux(self, video_path: str, audio_path: str, output_path: str) -> None:
        cmd = self.command(video_path, audio_path, output_path)
        log.debug("[REMUX] start cmd=%s", cmd)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.DEVNULL, stderr=asyncio.subprocess.PIPE
            )
        except OSError as exc:
            raise RemuxFailure(f"Remux failed, cannot start {self.binary}: {exc}") from exc

        tail: list[str] = []
        stderr_task = asyncio.create_task(_pump_stderr("ffmpeg", proc.stderr, tail))
        try:
            rc = await asyncio.wait_for(proc.wait(), timeout=self.timeout or None)
        except asyncio.TimeoutError:
            raise RemuxFailure(f"Remux failed, timed out after {self.timeout:g}s") from None
        finally:
            with contextlib.suppress(ProcessLookupError):
                if proc.returncode is None:
                    proc.kill()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(proc.wait(), timeout=2.0)
            if not stderr_task.done():
                stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stderr_task

        if rc != 0:
            detail = tail[-1] if tail else "no output"
            raise RemuxFailure(f"Remux failed, rc={rc}: {detail}")


# ---------------------- pipeline ---------------------------------------
class DualTrackPipeline:
    def __init__(
        self,
        store: CacheStore,
        http: httpx.AsyncClient,
        locks: KeyedLock,
        resolver: YouTubeResolver,
        remuxer: Optional[Remuxer] = None,
        tmp_dir: str = config.REMUX_TMP_DIR,
    ):
        self.store = store
        self.http = http
        self.locks = locks
        self.resolver = resolver
        self.remuxer = remuxer or FFmpegRemuxer()
        self.tmp_dir = tmp_dir

    # ── manifest ─────────────────────────────────────────────────────────────
    async def manifest(self, video: str, base_url: str) -> Manifest:
        descriptor = await self.resolver.resolve(video)
        audio = descriptor.best(KIND_AUDIO)
        await self.store.set_if_absent(youtube.audio_key(video), audio.url, config.YT_AUDIO_TTL)

        playlist_url = descriptor.best(KIND_VIDEO).url
        try:
            r = await self.http.get(playlist_url, headers={"User-Agent": config.USER_AGENT})
        except httpx.HTTPError as exc:
            await self.resolver.invalidate(video)
            raise UpstreamUnavailable("Failed to fetch YouTube live room play url") from exc
        if r.status_code != 200:
            await self.resolver.invalidate(video)
            raise UpstreamUnavailable("Failed to fetch YouTube live room play url")

        text = r.text
        route = f"{base_url.rstrip('/')}/play/live/yt/{video}/sq"
        mapped = 0
        for line in text.splitlines():
            if not is_media_line(line):
                continue
            seq = extract_sequence_id(line)
            if seq is None:
                log.warning("[REMUX] media line without sequence id video=%s line=%s", video, line.strip())
                continue
            origin = urljoin(playlist_url, line.strip())
            await self.store.set(youtube.sequence_key(video, seq), origin, config.YT_MAPPING_TTL)
            mapped += 1

        def _rewrite(line: str) -> str:
            seq = extract_sequence_id(line)
            return f"{route}/{seq}.ts" if seq is not None else line

        log.info("[REMUX] manifest video=%s sequences=%d", video, mapped)
        body = rewrite_media_lines(text, _rewrite)
        return Manifest(body.encode("utf-8"), urlsplit(playlist_url).netloc)

    # ── segment ──────────────────────────────────────────────────────────────
    async def serve(self, video: str, seq: str) -> Segment:
        blob_key = youtube.remuxed_blob_key(video, seq)
        hit = await self.store.get_blob(blob_key)
        if hit is not None:
            return Segment(hit[0], hit[1], "Hit")
        async with self.locks.hold(blob_key):
            hit = await self.store.get_blob(blob_key)
            if hit is not None:
                return Segment(hit[0], hit[1], "Hit")
            body = await self._produce(video, seq)
            await self.store.set_blob(blob_key, body, TS_CONTENT_TYPE, config.REMUXED_SEGMENT_TTL)
        return Segment(body, TS_CONTENT_TYPE, "Remux")

    async def _produce(self, video: str, seq: str) -> bytes:
        seq_url = await self.store.get(youtube.sequence_key(video, seq))
        if not seq_url:
            raise NotFound("Seq not found")
        audio_url = await self.store.get(youtube.audio_key(video))
        if not audio_url:
            raise NotFound("Audio not found")

        t0 = time.monotonic()
        selector = str(httpx.URL(audio_url).copy_merge_params({"sq": seq}))
        video_res, audio_res = await asyncio.gather(
            self._download(seq_url, "seq"),
            self._download(selector, "audio"),
            return_exceptions=True,
        )
        for res in (video_res, audio_res):
            if isinstance(res, BaseException):
                raise res
        log.info(
            "[REMUX] origin chunks downloaded video=%s seq=%s video=%dB audio=%dB elapsed=%.3fs",
            video, seq, len(video_res), len(audio_res), time.monotonic() - t0,
        )

        os.makedirs(self.tmp_dir, exist_ok=True)
        t0 = time.monotonic()
        with tempfile.TemporaryDirectory(prefix=f"liverelay-{video}-{seq}-", dir=self.tmp_dir) as workdir:
            video_path = os.path.join(workdir, f"{video}-{seq}.ts")
            audio_path = os.path.join(workdir, f"{video}-{seq}-audio.m4a")
            output_path = os.path.join(workdir, f"{video}-{seq}-final.ts")
            await anyio.Path(video_path).write_bytes(video_res)
            await anyio.Path(audio_path).write_bytes(audio_res)
            await self.remuxer.remux(video_path, audio_path, output_path)
            try:
                data = await anyio.Path(output_path).read_bytes()
            except FileNotFoundError:
                raise RemuxFailure("Remux failed, no output produced") from None
        if not data:
            raise RemuxFailure("Remux failed, empty output")
        log.info("[REMUX] muxed video=%s seq=%s bytes=%d elapsed=%.3fs", video, seq, len(data), time.monotonic() - t0)
        return data

    async def _download(self, url: str, what: str) -> bytes:
        try:
            r = await self.http.get(url, headers={"User-Agent": config.USER_AGENT})
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Failed to fetch {what}") from exc
        if r.status_code != 200:
            log.warning("[REMUX] origin %s status=%s", what, r.status_code)
            raise UpstreamUnavailable(f"Failed to fetch {what}")
        return r.content
