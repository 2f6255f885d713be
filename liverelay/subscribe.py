# liverelay/subscribe.py
# M3U channel list and XMLTV guide built from the cached room list.

from typing import Iterable
from xml.sax.saxutils import escape, quoteattr

DEFAULT_CHANNELS = [
    {"cid": 21756924, "name": "雪绘Yukie", "title": "雪绘Yukie直播间"},
    {"cid": 6, "name": "哔哩哔哩英雄联盟赛事", "title": "哔哩哔哩英雄联盟赛事直播间"},
]


def channels_from_rooms(rooms: Iterable[dict]) -> list[dict]:
    out = []
    for room in rooms:
        if not room.get("roomid"):
            continue
        out.append({
            "cid": room["roomid"],
            "name": room.get("uname") or str(room["roomid"]),
            "title": room.get("title") or "",
        })
    return out


def render_m3u(channels: list[dict], service_url: str) -> str:
    base = service_url.rstrip("/")
    lines = [f'#EXTM3U url-logos="{base}/meta/live/bili/cover/"', ""]
    for ch in channels:
        name = str(ch["name"]).replace(",", " ")
        lines.append(f'#EXTINF:-1 tvg-id="{ch["cid"]}" tvg-name="{name}" tvg-logo="{ch["cid"]}",{name}')
        lines.append(f"{base}/play/live/bili/{ch['cid']}/index.m3u8")
    return "\n".join(lines) + "\n"


def render_xmltv(channels: list[dict], service_url: str) -> str:
    base = service_url.rstrip("/")
    parts = ['<?xml version="1.0" encoding="UTF-8"?>', "<tv>"]
    for ch in channels:
        cid = ch["cid"]
        parts.append(
            f"<channel id={quoteattr(str(cid))}>\n"
            f"  <display-name>{escape(str(ch['name']))}</display-name>\n"
            f"  <icon src={quoteattr(f'{base}/meta/live/bili/user_avatar/{cid}.jpg')}/>\n"
            f"  <url>https://live.bilibili.com/{cid}</url>\n"
            f"</channel>"
        )
    for ch in channels:
        cid = ch["cid"]
        parts.append(
            f'<programme channel={quoteattr(str(cid))} start="20240101000000 +0000" stop="20770101000000 +0000">\n'
            f"  <title lang=\"zh\">{escape(str(ch.get('title') or ''))}</title>\n"
            f"  <icon src={quoteattr(f'{base}/meta/live/bili/cover/{cid}.jpg')}/>\n"
            f"  <url>https://live.bilibili.com/{cid}</url>\n"
            f"</programme>"
        )
    parts.append("</tv>")
    return "\n".join(parts) + "\n"
