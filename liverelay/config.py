# liverelay/config.py
# Environment-driven settings, read once at import.

import os
import tempfile


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        return default
    if value < 0:
        return 0.0
    return value


def _env_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        return default
    if value < 0:
        return 0
    return value


# ----------------------------- service --------------------------------
PORT = _env_int("PORT", 10028)
SERVICE_URL = os.getenv("SERVICE_URL", "").strip().rstrip("/")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "").strip() or os.path.join(os.path.dirname(os.path.abspath(__file__)), "logs")

# ----------------------------- cache store ----------------------------
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
REDIS_SOCKET_TIMEOUT = _env_float("REDIS_SOCKET_TIMEOUT", 3.0)

# ----------------------------- outbound http --------------------------
HTTP_TIMEOUT = _env_float("HTTP_TIMEOUT", 15.0)
HTTP_CONNECT_TIMEOUT = _env_float("HTTP_CONNECT_TIMEOUT", 5.0)
USER_AGENT = os.getenv(
    "USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0 Safari/537.36",
)

# ----------------------------- bilibili -------------------------------
BILI_SESSDATA = os.getenv("BILI_SESSDATA", "")
BILI_ROOM_LIST_PAGES = _env_int("BILI_ROOM_LIST_PAGES", 10)
BILI_PARENT_AREA_ID = _env_int("BILI_PARENT_AREA_ID", 9)
BILI_AREA_ID = _env_int("BILI_AREA_ID", 0)

BILI_DESCRIPTOR_TTL = 360
BILI_MAPPING_TTL = 360
LIVE_SEGMENT_TTL = 60
COVER_TTL = 3600
AVATAR_TTL = 60 * 60 * 72
ROOM_LIST_TTL = 3600

# ----------------------------- youtube --------------------------------
YT_COOKIES_FILE = os.getenv("YT_COOKIES_FILE", "")

YT_DESCRIPTOR_TTL = 7200
YT_MAPPING_TTL = 7200
YT_AUDIO_TTL = 7200
REMUXED_SEGMENT_TTL = 60

# ----------------------------- remux ----------------------------------
FFMPEG_BIN = os.getenv("FFMPEG", "ffmpeg")
REMUX_TIMEOUT = _env_float("REMUX_TIMEOUT", 30.0)
REMUX_TMP_DIR = os.getenv("REMUX_TMP_DIR", "") or tempfile.gettempdir()
DEBUG_FFMPEG = _env_bool("DEBUG_FFMPEG", "false")
