# liverelay/hls.py
"""Line-level HLS playlist handling: classify, map, rewrite."""

import re
from dataclasses import dataclass, field
from typing import Callable, Optional
from urllib.parse import urlsplit, urlunsplit

ALLOW_CACHE_TAG = "#EXT-X-ALLOW-CACHE"
TARGET_DURATION_TAG = "#EXT-X-TARGETDURATION"
MAP_TAG = "#EXT-X-MAP"

_MAP_URI_RE = re.compile(r'URI="?([^",]+)"?')
_SEQ_RE = re.compile(r"/sq/([^/?#]+)")


@dataclass
class Playlist:
    allow_cache: bool = False
    target_duration: int = 0
    map_uri: Optional[str] = None
    media: list[str] = field(default_factory=list)


def is_media_line(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith("#")


def parse_playlist(text: str) -> Playlist:
    out = Playlist()
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith(ALLOW_CACHE_TAG):
            out.allow_cache = line.partition(":")[2].strip().upper() == "YES"
        elif line.startswith(TARGET_DURATION_TAG):
            try:
                out.target_duration = int(float(line.partition(":")[2]))
            except ValueError:
                out.target_duration = 0
        elif line.startswith(MAP_TAG):
            m = _MAP_URI_RE.search(line)
            if m:
                out.map_uri = m.group(1)
        elif not line.startswith("#"):
            out.media.append(line)
    return out


def rewrite_media_lines(text: str, fn: Callable[[str], str]) -> str:
    """Apply ``fn`` to every media line; directives and line endings are kept."""
    lines = text.splitlines(keepends=True)
    out: list[str] = []
    for line in lines:
        body = line.rstrip("\r\n")
        if is_media_line(body):
            out.append(fn(body.strip()) + line[len(body):])
        else:
            out.append(line)
    return "".join(out)


def replace_last_component(url: str, name: str) -> str:
    """
    ``https://h/a/index.m3u8?sign=1`` + ``100.m4s`` -> ``https://h/a/100.m4s?sign=1``.

    The playlist's signed query is carried over unless ``name`` has its own.
    """
    parts = urlsplit(url)
    base, _, _ = parts.path.rpartition("/")
    path, sep, query = name.partition("?")
    return urlunsplit((parts.scheme, parts.netloc, f"{base}/{path}", query if sep else parts.query, ""))


def extract_sequence_id(line: str) -> Optional[str]:
    m = _SEQ_RE.search(line)
    return m.group(1) if m else None
