# tests/test_relay.py

import pytest

from liverelay import config
from liverelay.errors import UpstreamUnavailable
from liverelay.providers import bilibili
from liverelay.providers.bilibili import BiliResolver
from liverelay.relay import ManifestRelay
from tests.fakes import bili_play_info

PLAY_INFO_URL = bilibili.API_BASE + bilibili.PLAY_INFO_PATH
PLAYLIST_URL = "https://origin.example/live-bvc/7/index.m3u8"
SIGNED_PLAYLIST_URL = PLAYLIST_URL + "?expires=1"

ORIGIN_MANIFEST = (
    "#EXTM3U\n"
    "#EXT-X-VERSION:7\n"
    "#EXT-X-TARGETDURATION:1\n"
    '#EXT-X-MAP:URI="h1700000000.m4s"\n'
    "#EXTINF:1.025,\n"
    "37436521.m4s\n"
    "#EXTINF:1.025,\n"
    "37436522.m4s\n"
)


@pytest.fixture()
def relay(store, locks, http, origin):
    origin.add(PLAY_INFO_URL, json=bili_play_info("7", [(30000, "/live-bvc/7/index.m3u8")]))
    return ManifestRelay(store, http, BiliResolver(store, locks, http))


async def test_relative_manifest_is_returned_byte_identical(relay, origin):
    origin.add(PLAYLIST_URL, text=ORIGIN_MANIFEST)
    manifest = await relay.relay("7")
    assert manifest.body == ORIGIN_MANIFEST.encode()
    assert manifest.origin_host == "origin.example"


async def test_every_media_name_maps_to_the_playlist_url(relay, origin, store, fake_redis):
    origin.add(PLAYLIST_URL, text=ORIGIN_MANIFEST)
    await relay.relay("7")
    for name in ("37436521.m4s", "37436522.m4s", "h1700000000.m4s"):
        key = bilibili.mapping_key("7", name)
        assert await store.get(key) == SIGNED_PLAYLIST_URL
        assert fake_redis.ttl_of(key) == config.BILI_MAPPING_TTL


async def test_origin_failure_drops_the_descriptor(relay, origin, store):
    origin.add(PLAYLIST_URL, status=403)
    with pytest.raises(UpstreamUnavailable):
        await relay.relay("7")
    assert await store.get(bilibili.descriptor_key("7")) is None


async def test_fresh_descriptor_after_failure(relay, origin):
    origin.add(PLAYLIST_URL, status=403)
    with pytest.raises(UpstreamUnavailable):
        await relay.relay("7")
    origin.add(PLAYLIST_URL, text=ORIGIN_MANIFEST)
    await relay.relay("7")
    assert origin.count(PLAY_INFO_URL) == 2


async def test_descriptor_reused_between_manifest_polls(relay, origin):
    origin.add(PLAYLIST_URL, text=ORIGIN_MANIFEST)
    await relay.relay("7")
    await relay.relay("7")
    assert origin.count(PLAY_INFO_URL) == 1
    assert origin.count(PLAYLIST_URL) == 2
