# tests/test_meta.py

import asyncio

import pytest

from liverelay import config
from liverelay.errors import NotFound, UpstreamUnavailable
from liverelay.meta import (
    ROOM_INFO_PATH, ROOM_LIST_KEY, ROOM_LIST_PATH, BiliMeta, avatar_blob_key, avatar_url_key, cover_key,
    strip_extension,
)
from liverelay.providers.bilibili import API_BASE
from liverelay.subscribe import DEFAULT_CHANNELS, channels_from_rooms, render_m3u, render_xmltv

ROOM_LIST_URL = API_BASE + ROOM_LIST_PATH
ROOM_INFO_URL = API_BASE + ROOM_INFO_PATH

ROOMS = [
    {"roomid": 42, "uname": "Streamer", "title": "Ranked <solo>", "face": "https://img.example/42.jpg"},
    {"roomid": 43, "uname": "Other, Name", "title": "", "face": ""},
]


@pytest.fixture()
def meta(store, http, locks) -> BiliMeta:
    return BiliMeta(store, http, locks)


def test_strip_extension():
    assert strip_extension("7.jpg") == "7"
    assert strip_extension("2843.ts") == "2843"
    assert strip_extension("7") == "7"


async def test_room_list_walks_pages_and_records_avatars(meta, origin, store, fake_redis, monkeypatch):
    monkeypatch.setattr(config, "BILI_ROOM_LIST_PAGES", 2)
    origin.add(ROOM_LIST_URL, json={"code": 0, "data": {"list": ROOMS}})

    rooms = await meta.room_list()

    assert len(rooms) == 4
    assert [c.params["page"] for c in origin.calls] == ["1", "2"]
    assert await store.get(avatar_url_key(42)) == "https://img.example/42.jpg"
    assert await store.get(avatar_url_key(43)) is None
    assert fake_redis.ttl_of(ROOM_LIST_KEY) == config.ROOM_LIST_TTL


async def test_room_list_is_cached(meta, origin, monkeypatch):
    monkeypatch.setattr(config, "BILI_ROOM_LIST_PAGES", 1)
    origin.add(ROOM_LIST_URL, json={"code": 0, "data": {"list": ROOMS}})
    await meta.room_list()
    assert await meta.room_list() == ROOMS
    assert origin.count(ROOM_LIST_URL) == 1


async def test_room_list_error_code_is_unavailable(meta, origin, store, monkeypatch):
    monkeypatch.setattr(config, "BILI_ROOM_LIST_PAGES", 1)
    origin.add(ROOM_LIST_URL, json={"code": -352, "message": "risk control"})
    with pytest.raises(UpstreamUnavailable):
        await meta.room_list()
    assert await store.get(ROOM_LIST_KEY) is None


async def test_cover_fetches_once_under_concurrency(store, locks, origin, fake_redis):
    origin.delay = 0.02
    origin.add(ROOM_INFO_URL, json={"code": 0, "data": {"user_cover": "https://img.example/c.jpg"}})
    origin.add("https://img.example/c.jpg", content=b"JPEG", content_type="image/jpeg")
    async with origin.client() as http:
        meta = BiliMeta(store, http, locks)
        results = await asyncio.gather(*(meta.cover("7") for _ in range(3)))
    assert set(results) == {(b"JPEG", "image/jpeg")}
    assert origin.count("https://img.example/c.jpg") == 1
    assert fake_redis.ttl_of(cover_key("7")) == config.COVER_TTL


async def test_cover_image_failure_is_404(meta, origin):
    origin.add(ROOM_INFO_URL, json={"code": 0, "data": {"user_cover": "https://img.example/c.jpg"}})
    origin.add("https://img.example/c.jpg", status=403)
    with pytest.raises(UpstreamUnavailable) as info:
        await meta.cover("7")
    assert info.value.status_code == 404


async def test_avatar_needs_recorded_url(meta, origin):
    with pytest.raises(NotFound):
        await meta.avatar("7")
    assert origin.calls == []


async def test_avatar_blob_kept_for_three_days(meta, origin, store, fake_redis):
    await store.set(avatar_url_key("7"), "https://img.example/face.png", ttl=60)
    origin.add("https://img.example/face.png", content=b"PNG", content_type="image/png")
    assert await meta.avatar("7") == (b"PNG", "image/png")
    assert fake_redis.ttl_of(avatar_blob_key("7")) == config.AVATAR_TTL


# --------------------------- subscribe ----------------------------------
def test_channels_skip_rooms_without_id():
    channels = channels_from_rooms(ROOMS + [{"uname": "ghost"}])
    assert [c["cid"] for c in channels] == [42, 43]


def test_m3u_lists_each_channel_with_play_url():
    text = render_m3u(channels_from_rooms(ROOMS), "https://tv.example/")
    lines = text.splitlines()
    assert lines[0] == '#EXTM3U url-logos="https://tv.example/meta/live/bili/cover/"'
    assert '#EXTINF:-1 tvg-id="43" tvg-name="Other  Name" tvg-logo="43",Other  Name' in lines
    assert "https://tv.example/play/live/bili/42/index.m3u8" in lines


def test_xmltv_escapes_titles():
    text = render_xmltv(channels_from_rooms(ROOMS), "https://tv.example")
    assert "Ranked &lt;solo&gt;" in text
    assert '<icon src="https://tv.example/meta/live/bili/user_avatar/42.jpg"/>' in text
    assert text.rstrip().endswith("</tv>")


def test_default_channels_render():
    text = render_m3u(DEFAULT_CHANNELS, "http://relay")
    assert "http://relay/play/live/bili/6/index.m3u8" in text
