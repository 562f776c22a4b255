import httpx
import pytest
from fastapi.testclient import TestClient

import app as api
import config
from history import HistoryStore
from models import ExtractionResult
from scraper import get_http_client

EPISODE_API = f"{config.EPISODE_API_URL}/ep-1"
EPISODE_PAGE = "https://otakudesu.best/episode/ep-1/"
EPISODE_HTML = """
<div class="download"><a href="https://mega.nz/file/a">Mega 720p</a></div>
<iframe src="https://desustream.me/embed/abc"></iframe>
"""


@pytest.fixture
def client():
    with_client = TestClient(api.app)
    yield with_client
    api.app.dependency_overrides.clear()


@pytest.fixture
def upstream(make_client):
    def install(routes):
        async def override():
            async with make_client(routes) as http_client:
                yield http_client
        api.app.dependency_overrides[get_http_client] = override
    return install


@pytest.fixture
def history_store(tmp_path):
    store = HistoryStore(str(tmp_path / "history.db"))
    api.app.dependency_overrides[api.get_history_store] = lambda: store
    yield store
    store.close()


def test_root_and_health(client):
    assert client.get("/").json()["documentation"] == "/docs"

    health = client.get("/api/health").json()
    assert health["status"] == "ok"
    assert health["database"] == "disconnected"


def test_unknown_endpoint(client):
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.json() == {"status": "error", "message": "Endpoint not found", "path": "/api/nope"}


def test_video_links_success(client, upstream):
    upstream({
        EPISODE_API: {"status": "success", "data": {"otakudesu_url": EPISODE_PAGE, "episode": "Episode 1"}},
        EPISODE_PAGE: EPISODE_HTML,
    })
    response = client.get("/api/videos/ep-1")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["episode_slug"] == "ep-1"
    assert body["episode_title"] == "Episode 1"
    assert body["source_url"] == EPISODE_PAGE
    assert body["total_links"] == 2
    assert body["video_links"][0] == {
        "url": "https://mega.nz/file/a",
        "quality": "720p",
        "provider": "MEGA",
        "type": "download",
        "display_text": "Mega 720p",
    }


def test_video_links_blank_slug(client):
    response = client.get("/api/videos/%20")
    assert response.status_code == 400
    assert response.json()["status"] == "error"


def test_video_links_missing_page_url(client, upstream):
    upstream({EPISODE_API: {"status": "success", "data": {"episode": "Episode 1"}}})
    response = client.get("/api/videos/ep-1")

    assert response.status_code == 404
    assert response.json()["message"] == "Episode page URL not found"


def test_video_links_no_links_is_not_found(client, upstream):
    upstream({
        EPISODE_API: {"status": "success", "data": {"otakudesu_url": EPISODE_PAGE}},
        EPISODE_PAGE: "<html><body>nothing here</body></html>",
    })
    response = client.get("/api/videos/ep-1")

    assert response.status_code == 404


def test_video_links_upstream_failure(client, upstream):
    upstream({EPISODE_API: {"status": "error"}})
    response = client.get("/api/videos/ep-1")

    assert response.status_code == 500
    assert response.json() == {
        "status": "error",
        "message": "Failed to get video links",
        "details": "Failed to get episode data",
    }


def test_video_links_page_fetch_failure(client, upstream):
    upstream({
        EPISODE_API: {"status": "success", "data": {"otakudesu_url": EPISODE_PAGE}},
        EPISODE_PAGE: httpx.ConnectError("connection reset"),
    })
    response = client.get("/api/videos/ep-1")

    assert response.status_code == 500
    assert response.json()["details"] == "Failed to scrape video: connection reset"


def test_resolve(client, upstream):
    upstream({"https://embed.example/e/1": '<video><source src="https://cdn/a.mp4"></video>'})
    response = client.post("/api/resolve", json={"embedUrl": "https://embed.example/e/1"})

    assert response.status_code == 200
    assert response.json() == {"status": "success", "embed_url": "https://embed.example/e/1", "direct_url": "https://cdn/a.mp4"}


def test_resolve_requires_url(client):
    assert client.post("/api/resolve", json={}).status_code == 400
    assert client.post("/api/resolve", json={"embedUrl": "  "}).status_code == 400


def test_resolve_not_found(client, upstream):
    upstream({"https://embed.example/e/1": "<html></html>"})
    response = client.post("/api/resolve", json={"embedUrl": "https://embed.example/e/1"})

    assert response.status_code == 404
    assert response.json()["message"] == "Could not extract direct stream URL"


def test_resolve_invalid_url_is_not_found(client, upstream):
    upstream({})
    response = client.post("/api/resolve", json={"embedUrl": "http://[::1/e"})

    assert response.status_code == 404
    assert response.json()["status"] == "error"


def test_stream_extract(client, monkeypatch):
    async def fake_extract(session, iframe_url):
        return ExtractionResult(type="hls", url="https://cdn/master.m3u8")
    monkeypatch.setattr(api, "extract_stream", fake_extract)

    response = client.post("/api/stream/extract", json={"iframeUrl": "https://desustream.me/embed/1"})

    assert response.status_code == 200
    assert response.json()["stream"] == {"type": "hls", "url": "https://cdn/master.m3u8"}


def test_stream_extract_no_result(client, monkeypatch):
    async def fake_extract(session, iframe_url):
        return None
    monkeypatch.setattr(api, "extract_stream", fake_extract)

    response = client.post("/api/stream/extract", json={"iframeUrl": "https://desustream.me/embed/1"})
    assert response.status_code == 404
    assert client.post("/api/stream/extract", json={}).status_code == 400


def test_gateway(client, monkeypatch):
    async def fake_gateway(session, gateway_url):
        return "https://pixeldrain.com/api/file/ABC123"
    monkeypatch.setattr(api, "extract_gateway_link", fake_gateway)

    response = client.post("/api/stream/gateway", json={"gatewayUrl": "https://safelink.example/go/1"})

    assert response.status_code == 200
    assert response.json()["download_url"] == "https://pixeldrain.com/api/file/ABC123"


def test_gateway_no_result(client, monkeypatch):
    async def fake_gateway(session, gateway_url):
        return None
    monkeypatch.setattr(api, "extract_gateway_link", fake_gateway)

    response = client.post("/api/stream/gateway", json={"gatewayUrl": "https://safelink.example/go/1"})
    assert response.status_code == 404


def test_history_without_database(client):
    response = client.get("/api/history", params={"deviceId": "device-1"})
    assert response.status_code == 503
    assert response.json()["message"] == "Database is not configured"


def test_history_flow(client, history_store):
    saved = client.post("/api/history", json={
        "deviceId": "device-1",
        "animeSlug": "naruto",
        "episodeSlug": "naruto-episode-1",
        "lastPosition": 95,
    })
    assert saved.status_code == 200
    assert saved.json()["status"] == "success"

    listing = client.get("/api/history", params={"deviceId": "device-1"}).json()
    assert listing["total"] == 1
    assert listing["history"][0]["episodeSlug"] == "naruto-episode-1"
    assert listing["history"][0]["lastPosition"] == 95

    progress = client.get("/api/history/naruto-episode-1", params={"deviceId": "device-1"}).json()
    assert progress["found"] is True
    assert progress["lastPosition"] == 95

    missing = client.get("/api/history/naruto-episode-9", params={"deviceId": "device-1"}).json()
    assert missing["found"] is False
    assert missing["lastPosition"] == 0

    deleted = client.request("DELETE", "/api/history", json={"deviceId": "device-1", "episodeSlug": "naruto-episode-1"})
    assert deleted.status_code == 200

    again = client.request("DELETE", "/api/history", json={"deviceId": "device-1", "episodeSlug": "naruto-episode-1"})
    assert again.status_code == 404


def test_history_validation(client, history_store):
    assert client.post("/api/history", json={"deviceId": "device-1"}).status_code == 400
    assert client.get("/api/history").status_code == 400
    assert client.get("/api/history/naruto-episode-1").status_code == 400
    assert client.request("DELETE", "/api/history", json={"episodeSlug": "x"}).status_code == 400


def test_history_clear_device(client, history_store):
    history_store.save("device-1", "naruto", "naruto-episode-1", 10)
    history_store.save("device-1", "naruto", "naruto-episode-2", 20)

    response = client.delete("/api/history/device/device-1")

    assert response.status_code == 200
    assert history_store.list_for_device("device-1") == []


ANIME_HOME = """
<div class="post-show">
  <article>
    <div class="title"><a href="https://samehadaku.cc/one-piece/">One Piece</a></div>
    <span class="episode">Episode 1100</span>
  </article>
</div>
"""


def test_anime_latest(client, upstream):
    upstream({f"{config.ANIME_BASE_URL}/": ANIME_HOME})
    response = client.get("/api/anime/latest")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["total"] == 1
    assert body["results"][0]["id"] == "one-piece"
    assert body["results"][0]["latest_episode"] == "Episode 1100"


def test_anime_search_not_found(client, upstream):
    upstream({f"{config.ANIME_BASE_URL}/?s=zzz": "<html></html>"})
    response = client.get("/api/anime/search/zzz")

    assert response.status_code == 404
    assert response.json()["message"] == "No anime found for search term: zzz"


def test_anime_detail(client, upstream):
    upstream({
        f"{config.ANIME_BASE_URL}/anime/one-piece/": """
        <div class="title-content"><h1>One Piece</h1></div>
        <div class="lstepsiode"><div class="item"><ul>
          <li><a href="https://samehadaku.cc/one-piece-episode-1/">1</a></li>
        </ul></div></div>
        """,
    })
    response = client.get("/api/anime/one-piece")

    assert response.status_code == 200
    anime = response.json()["anime"]
    assert anime["title"] == "One Piece"
    assert anime["episodes"] == [{"number": "Episode 1", "date": "Unknown", "url": "https://samehadaku.cc/one-piece-episode-1/"}]


def test_anime_streaming_links(client, upstream):
    episode_url = "https://samehadaku.cc/one-piece-episode-1/"
    upstream({episode_url: '<iframe src="https://player.example/e/1"></iframe>'})
    response = client.get("/api/anime/stream", params={"url": episode_url})

    assert response.status_code == 200
    assert response.json()["streaming_links"] == [
        {"provider": "player.example", "url": "https://player.example/e/1", "type": "iframe"},
    ]
    assert client.get("/api/anime/stream").status_code == 400


def test_anime_upstream_unreachable(client, upstream):
    upstream({f"{config.ANIME_BASE_URL}/": httpx.ConnectError("connection refused")})
    response = client.get("/api/anime/latest")

    assert response.status_code == 503
    assert response.json() == {"status": "error", "message": "Network error", "details": "connection refused"}
