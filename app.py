#  app.py
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Depends, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from httpx import AsyncClient
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from catalog import scrape_anime_detail, scrape_anime_search, scrape_latest_anime, scrape_streaming_links
from headless import BrowserSession, extract_stream, extract_gateway_link
from history import HistoryStore
from models import (
    AnimeDetailResponse,
    AnimeListResponse,
    ErrorResponse,
    GatewayRequest,
    GatewayResponse,
    HistoryDelete,
    HistoryEntry,
    HistoryUpsert,
    MessageResponse,
    ResolveRequest,
    ResolveResponse,
    StreamExtractRequest,
    StreamExtractResponse,
    StreamingLinksResponse,
    VideoLinksResponse,
)
from scraper import fetch_episode_data, get_http_client, resolve_direct_stream, scrape_video_links

# Configure logging
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # The browser is launched on first use, not here
    app.state.browser_session = BrowserSession()

    app.state.history = None
    if config.HISTORY_DB_PATH:
        store = HistoryStore(config.HISTORY_DB_PATH)
        try:
            store.open()
            app.state.history = store
        except Exception as e:
            logger.error(f"History database initialization error: {e}")
            logger.warning("Continuing without database connection. History endpoints will be disabled.")
    else:
        logger.warning("HISTORY_DB_PATH not set; starting without history features.")

    try:
        yield
    finally:
        logger.info("Shutting down...")
        await app.state.browser_session.shutdown()
        if app.state.history:
            app.state.history.close()

# Initialize FastAPI app
app = FastAPI(
    title="Anime Stream Scraper API",
    description="API to browse the samehadaku anime catalogue, scrape episode video links from otakudesu, resolve embed players to direct streams, and keep per-device watch history.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(CORSMiddleware, allow_origins=config.CORS_ORIGINS, allow_methods=["*"], allow_headers=["*"])
app.add_middleware(GZipMiddleware)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid input"},
    404: {"model": ErrorResponse, "description": "Nothing found"},
    500: {"model": ErrorResponse, "description": "Upstream or processing failure"},
}

CATALOG_RESPONSES = {
    **ERROR_RESPONSES,
    502: {"model": ErrorResponse, "description": "Catalogue site answered with an error"},
    503: {"model": ErrorResponse, "description": "Catalogue site unreachable"},
}

HISTORY_RESPONSES = {
    **ERROR_RESPONSES,
    503: {"model": ErrorResponse, "description": "History database is not configured"},
}

# Render every error in the {"status": "error", ...} envelope
def error_response(status_code: int, message: str, details: Optional[str] = None, **extra) -> JSONResponse:
    content = {"status": "error", "message": message}
    if details:
        content["details"] = details
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return error_response(404, "Endpoint not found", path=request.url.path)
    if isinstance(exc.detail, dict):
        return error_response(exc.status_code, exc.detail.get("message", "Error"), exc.detail.get("details"))
    return error_response(exc.status_code, str(exc.detail))

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(400, "Invalid request", str(exc.errors()))

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return error_response(500, "Internal server error", str(exc))

# Dependencies for app-owned resources
def get_browser_session(request: Request) -> BrowserSession:
    session = getattr(request.app.state, "browser_session", None)
    if session is None:
        session = request.app.state.browser_session = BrowserSession()
    return session

def get_history_store(request: Request) -> HistoryStore:
    store = getattr(request.app.state, "history", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    return store

def require(value: Optional[str], message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail=message)
    return value

# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Anime Stream Scraper API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/api/health",
            "videos": {
                "links": "/api/videos/{slug}",
                "resolve": "POST /api/resolve {embedUrl}",
                "stream": "POST /api/stream/extract {iframeUrl}",
                "gateway": "POST /api/stream/gateway {gatewayUrl}",
            },
            "anime": {
                "latest": "/api/anime/latest",
                "search": "/api/anime/search/{query}",
                "detail": "/api/anime/{slug}",
                "stream": "/api/anime/stream?url={episodeUrl}",
            },
            "history": {
                "save": "POST /api/history {deviceId, animeSlug, episodeSlug, lastPosition}",
                "list": "/api/history?deviceId={deviceId}",
                "episode": "/api/history/{episodeSlug}?deviceId={deviceId}",
                "delete": "DELETE /api/history {deviceId, episodeSlug}",
                "clear": "DELETE /api/history/device/{deviceId}",
            },
        },
        "documentation": "/docs"
    }

@app.get("/api/health", tags=["Root"])
async def health(request: Request):
    store = getattr(request.app.state, "history", None)
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": "connected" if store is not None else "disconnected",
    }

# Get video links for an episode
@app.get(
    "/api/videos/{slug}",
    response_model=VideoLinksResponse,
    responses=ERROR_RESPONSES,
    tags=["Videos"],
    summary="Get episode video links",
    description="Look up the episode page through the episode API and scrape its download, iframe, mirror and script links. Example: `/api/videos/kimetsu-no-yaiba-episode-1-sub-indo`"
)
async def get_video_links(
    slug: str = Path(..., description="Episode slug"),
    client: AsyncClient = Depends(get_http_client)
):
    slug = require(slug, "Episode slug is required")

    episode_data = await fetch_episode_data(slug, client)
    source_url = episode_data.get("otakudesu_url")
    if not source_url:
        raise HTTPException(status_code=404, detail="Episode page URL not found")

    video_links = await scrape_video_links(source_url, client)
    if not video_links:
        logger.warning(f"No video links found for episode: {slug}")
        raise HTTPException(status_code=404, detail="No video links found")

    return VideoLinksResponse(
        episode_slug=slug,
        episode_title=episode_data.get("episode") or "Unknown",
        source_url=source_url,
        video_links=video_links,
        total_links=len(video_links),
    )

@app.post(
    "/api/resolve",
    response_model=ResolveResponse,
    responses=ERROR_RESPONSES,
    tags=["Videos"],
    summary="Resolve an embed page to a direct stream",
    description="Fetch an embed page and return the first direct MP4/M3U8 URL found in its video tag or player scripts."
)
async def resolve_embed(
    body: ResolveRequest,
    client: AsyncClient = Depends(get_http_client)
):
    embed_url = require(body.embed_url, "Embed URL is required in request body")

    direct_url = await resolve_direct_stream(embed_url, client)
    if not direct_url:
        raise HTTPException(status_code=404, detail="Could not extract direct stream URL")

    return ResolveResponse(embed_url=embed_url, direct_url=direct_url)

@app.post(
    "/api/stream/extract",
    response_model=StreamExtractResponse,
    responses=ERROR_RESPONSES,
    tags=["Videos"],
    summary="Extract a stream with the headless browser",
    description="Load a player iframe in headless Chromium and recover its HLS or MP4 stream from the page or its network requests."
)
async def extract_iframe_stream(
    body: StreamExtractRequest,
    session: BrowserSession = Depends(get_browser_session)
):
    iframe_url = require(body.iframe_url, "Iframe URL is required in request body")

    stream = await extract_stream(session, iframe_url)
    if not stream:
        raise HTTPException(status_code=404, detail="No video stream found")

    return StreamExtractResponse(iframe_url=iframe_url, stream=stream)

@app.post(
    "/api/stream/gateway",
    response_model=GatewayResponse,
    responses=ERROR_RESPONSES,
    tags=["Videos"],
    summary="Resolve a safelink page to its download link",
    description=f"Follow a safelink/gateway page in headless Chromium and return the canonical {config.GATEWAY_TARGET_HOST} API-file URL."
)
async def resolve_gateway(
    body: GatewayRequest,
    session: BrowserSession = Depends(get_browser_session)
):
    gateway_url = require(body.gateway_url, "Gateway URL is required in request body")

    download_url = await extract_gateway_link(session, gateway_url)
    if not download_url:
        raise HTTPException(status_code=404, detail=f"No {config.GATEWAY_TARGET_HOST} link found")

    return GatewayResponse(gateway_url=gateway_url, download_url=download_url)

# Anime catalogue (specific routes before the generic /api/anime/{slug})
@app.get(
    "/api/anime/latest",
    response_model=AnimeListResponse,
    responses=CATALOG_RESPONSES,
    tags=["Anime"],
    summary="Latest anime releases",
    description="Scrape the latest releases from the catalogue home page (at most 20)."
)
async def get_latest_anime(client: AsyncClient = Depends(get_http_client)):
    results = await scrape_latest_anime(client)
    return AnimeListResponse(results=results, total=len(results))

@app.get(
    "/api/anime/search/{query}",
    response_model=AnimeListResponse,
    responses=CATALOG_RESPONSES,
    tags=["Anime"],
    summary="Search anime",
    description="Search the catalogue by title. Example: `/api/anime/search/naruto`"
)
async def search_anime(
    query: str = Path(..., description="Search term"),
    client: AsyncClient = Depends(get_http_client)
):
    query = require(query, "Search query is required")

    results = await scrape_anime_search(query, client)
    return AnimeListResponse(results=results, total=len(results))

@app.get(
    "/api/anime/stream",
    response_model=StreamingLinksResponse,
    responses=CATALOG_RESPONSES,
    tags=["Anime"],
    summary="Player iframes of an episode page",
    description="Scrape the player iframes (at most five) of a catalogue episode page."
)
async def get_anime_streaming_links(
    url: Optional[str] = Query(None, description="Episode page URL"),
    client: AsyncClient = Depends(get_http_client)
):
    episode_url = require(url, "url query parameter is required")

    links = await scrape_streaming_links(episode_url, client)
    return StreamingLinksResponse(episode_url=episode_url, streaming_links=links, total=len(links))

@app.get(
    "/api/anime/{slug}",
    response_model=AnimeDetailResponse,
    responses=CATALOG_RESPONSES,
    tags=["Anime"],
    summary="Anime detail",
    description="Title, poster, synopsis, info table and episode list of an anime. Example: `/api/anime/one-piece`"
)
async def get_anime_detail(
    slug: str = Path(..., description="Anime slug"),
    client: AsyncClient = Depends(get_http_client)
):
    slug = require(slug, "Anime slug is required")

    anime = await scrape_anime_detail(slug, client)
    return AnimeDetailResponse(anime=anime)

# Watch history
@app.post("/api/history", response_model=MessageResponse, responses=HISTORY_RESPONSES, tags=["History"], summary="Save watch progress")
def save_history(body: HistoryUpsert, store: HistoryStore = Depends(get_history_store)):
    if not (body.device_id or "").strip() or not (body.episode_slug or "").strip():
        raise HTTPException(status_code=400, detail="deviceId and episodeSlug are required")

    store.save(body.device_id, body.anime_slug, body.episode_slug, body.last_position or 0)
    return MessageResponse(message="Watch progress saved")

@app.get("/api/history", responses=HISTORY_RESPONSES, tags=["History"], summary="List watch history for a device")
def list_history(
    device_id: Optional[str] = Query(None, alias="deviceId", description="Client device identifier"),
    store: HistoryStore = Depends(get_history_store)
):
    device_id = require(device_id, "deviceId query parameter is required")

    rows = [HistoryEntry(**row).model_dump(by_alias=True) for row in store.list_for_device(device_id)]
    return {"status": "success", "history": rows, "total": len(rows)}

@app.get("/api/history/{episode_slug}", responses=HISTORY_RESPONSES, tags=["History"], summary="Get watch progress for an episode")
def get_episode_progress(
    episode_slug: str = Path(..., description="Episode slug"),
    device_id: Optional[str] = Query(None, alias="deviceId", description="Client device identifier"),
    store: HistoryStore = Depends(get_history_store)
):
    device_id = require(device_id, "deviceId query parameter is required")

    row = store.get(device_id, episode_slug)
    if not row:
        return {"status": "success", "lastPosition": 0, "found": False}
    return {"status": "success", **HistoryEntry(**row).model_dump(by_alias=True), "found": True}

@app.delete("/api/history", response_model=MessageResponse, responses=HISTORY_RESPONSES, tags=["History"], summary="Delete one history entry")
def delete_history(body: HistoryDelete, store: HistoryStore = Depends(get_history_store)):
    if not (body.device_id or "").strip() or not (body.episode_slug or "").strip():
        raise HTTPException(status_code=400, detail="deviceId and episodeSlug are required")

    if store.delete(body.device_id, body.episode_slug) == 0:
        raise HTTPException(status_code=404, detail="History entry not found")
    return MessageResponse(message="Watch history deleted")

@app.delete("/api/history/device/{device_id}", response_model=MessageResponse, responses=HISTORY_RESPONSES, tags=["History"], summary="Clear all history for a device")
def clear_history(
    device_id: str = Path(..., description="Client device identifier"),
    store: HistoryStore = Depends(get_history_store)
):
    device_id = require(device_id, "deviceId is required")

    store.clear_device(device_id)
    return MessageResponse(message="All watch history cleared")

if __name__ == "__main__":
    uvicorn.run("app:app", host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())
