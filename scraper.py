# scraper.py
"""
Static scraper for anime episode pages and embed players.

This module provides:
- extract_links: pure HTML -> VideoLink extraction (download sections, iframes,
  mirror/stream buttons and inline scripts), deduplicated by URL
- scrape_video_links: fetch an episode page and run extract_links on it
- resolve_direct_stream: fetch an embed page and pull one direct MP4/M3U8 URL
- fetch_episode_data: episode metadata from the upstream JSON API

Fetch failures while scraping an episode page are raised as HTTPException;
the embed resolver treats them as "not found".
"""
from httpx import AsyncClient, HTTPStatusError, InvalidURL, RequestError
from bs4 import BeautifulSoup
from urllib.parse import quote
import logging
import re
from fastapi import HTTPException
from typing import Dict, List, Optional, Tuple
from models import VideoLink
import config

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Section markers on otakudesu episode pages
DOWNLOAD_SECTION_CLASSES = ["download-eps", "download", "venutama"]
# Mirror buttons and play buttons, matched together so page order is kept
STREAM_BUTTON_SELECTOR = ".mirrorstream a, .streaming a, .play-video"

# Hosts accepted inside download sections
ALLOWED_HOSTS = (
    "anonfiles",
    "mega.nz",
    "drive.google",
    "acefile",
    "zippyshare",
    "mediafire",
    "streamsb",
    "mp4upload",
    "yourupload",
    "fembed",
    "streamlare",
)

# First match wins; legacy hosts have no label
PROVIDER_LABELS: List[Tuple[str, str]] = [
    ("drive.google", "Google Drive"),
    ("mega.nz", "MEGA"),
    ("mediafire", "MediaFire"),
    ("streamsb", "StreamSB"),
    ("mp4upload", "MP4Upload"),
    ("yourupload", "YourUpload"),
    ("fembed", "Fembed"),
    ("streamlare", "Streamlare"),
]

IFRAME_MARKERS = ("stream", "embed", "player")

QUALITY_PATTERN = re.compile(r'(\d{3,4}p?)', re.IGNORECASE)
MP4_PATTERN = re.compile(r'https?://[^\s"\']+\.mp4', re.IGNORECASE)
M3U8_PATTERN = re.compile(r'https?://[^\s"\']+\.m3u8', re.IGNORECASE)

# Key assignments inside player setup scripts, e.g. file: "https://.../a.mp4"
EMBED_MP4_PATTERN = re.compile(r'(?:source|src|file)["\']?\s*[:=]\s*["\']([^"\']+\.mp4[^"\']*)', re.IGNORECASE)
EMBED_M3U8_PATTERN = re.compile(r'(?:source|src|file)["\']?\s*[:=]\s*["\']([^"\']+\.m3u8[^"\']*)', re.IGNORECASE)

# Helper function to extract quality from link text
def extract_quality(text: str) -> str:
    """Return the first 3-4 digit quality token (e.g. '720p') or 'unknown'"""
    match = QUALITY_PATTERN.search(text or "")
    return match.group(1) if match else "unknown"

# Helper function to map a hosting URL to a provider label
def get_provider(url: str) -> str:
    for marker, label in PROVIDER_LABELS:
        if marker in url:
            return label
    return "unknown"

def is_allowed_host(url: str) -> bool:
    return any(host in url for host in ALLOWED_HOSTS)

# Helper function to read the text of every script tag
def script_bodies(soup: BeautifulSoup) -> List[str]:
    bodies = []
    for script in soup.find_all("script"):
        text = script.string or script.get_text()
        if text:
            bodies.append(text)
    return bodies

def _download_links(soup: BeautifulSoup) -> List[VideoLink]:
    links = []
    for section in soup.find_all(class_=DOWNLOAD_SECTION_CLASSES):
        for anchor in section.find_all("a"):
            url = anchor.get("href")
            if not url or not is_allowed_host(url):
                continue
            text = anchor.get_text().strip()
            links.append(VideoLink(
                url=url,
                quality=extract_quality(text),
                provider=get_provider(url),
                type="download",
                display_text=text,
            ))
    return links

def _iframe_links(soup: BeautifulSoup) -> List[VideoLink]:
    links = []
    for iframe in soup.find_all("iframe"):
        src = iframe.get("src")
        if src and any(marker in src for marker in IFRAME_MARKERS):
            links.append(VideoLink(url=src, quality="stream", provider="embed", type="iframe"))
    return links

def _stream_button_links(soup: BeautifulSoup) -> List[VideoLink]:
    links = []
    for element in soup.select(STREAM_BUTTON_SELECTOR):
        url = element.get("href") or element.get("data-src")
        if not url or not url.startswith("http"):
            continue
        text = element.get_text().strip()
        links.append(VideoLink(
            url=url,
            quality="stream",
            provider=text or "Stream",
            type="stream",
            display_text=text,
        ))
    return links

def _script_links(soup: BeautifulSoup) -> List[VideoLink]:
    links = []
    for body in script_bodies(soup):
        for url in MP4_PATTERN.findall(body):
            links.append(VideoLink(url=url, quality="direct", provider="Direct MP4", type="direct"))
        for url in M3U8_PATTERN.findall(body):
            links.append(VideoLink(url=url, quality="hls", provider="HLS Stream", type="stream"))
    return links

def dedupe_links(links: List[VideoLink]) -> List[VideoLink]:
    """Keep one link per URL; a later duplicate replaces the earlier one in place"""
    unique: Dict[str, VideoLink] = {}
    for link in links:
        unique[link.url] = link
    return list(unique.values())

def extract_links(html: str) -> List[VideoLink]:
    """
    Collect candidate video links from an episode page.

    Heuristics run in a fixed order (download sections, iframes, mirror/stream
    buttons, inline scripts) and their results are merged before deduplication.
    Malformed HTML yields fewer links, never an exception.
    """
    soup = BeautifulSoup(html or "", "html.parser")

    links: List[VideoLink] = []
    links.extend(_download_links(soup))
    links.extend(_iframe_links(soup))
    links.extend(_stream_button_links(soup))
    links.extend(_script_links(soup))

    return dedupe_links(links)

async def scrape_video_links(episode_url: str, client: AsyncClient) -> List[VideoLink]:
    """
    Fetch an episode page and extract its video links.

    Raises HTTPException(500) carrying the upstream error text when the page
    cannot be fetched.
    """
    logger.info(f"Scraping video links from: {episode_url}")
    try:
        response = await client.get(episode_url)
        response.raise_for_status()
    except Exception as e:
        logger.error(f"Video scraping error for {episode_url}: {e}")
        raise HTTPException(
            status_code=500,
            detail={"message": "Failed to get video links", "details": f"Failed to scrape video: {str(e)}"},
        )

    links = extract_links(response.text)
    logger.info(f"Found {len(links)} video links on {episode_url}")
    return links

def find_embed_source(html: str) -> Optional[str]:
    """Locate one direct media URL in an embed page (video tag first, then scripts)"""
    soup = BeautifulSoup(html or "", "html.parser")

    source_tag = soup.select_one("video source")
    if source_tag and source_tag.get("src"):
        return source_tag.get("src")

    video_tag = soup.find("video")
    if video_tag:
        src = video_tag.get("data-src") or video_tag.get("src")
        if src:
            return src

    for body in script_bodies(soup):
        match = EMBED_MP4_PATTERN.search(body) or EMBED_M3U8_PATTERN.search(body)
        if match:
            return match.group(1)

    return None

async def resolve_direct_stream(embed_url: str, client: AsyncClient) -> Optional[str]:
    """Fetch an embed page and return its direct stream URL, or None"""
    logger.info(f"Extracting direct stream from: {embed_url}")
    try:
        response = await client.get(embed_url)
        response.raise_for_status()
    except Exception as e:
        logger.warning(f"Failed to extract direct stream from {embed_url}: {e}")
        return None

    direct_url = find_embed_source(response.text)
    if not direct_url:
        logger.warning(f"No direct stream found in {embed_url}")
    return direct_url

async def fetch_episode_data(slug: str, client: AsyncClient) -> dict:
    """
    Get episode metadata from the upstream API.

    Returns the "data" object of a successful response. Transport errors,
    non-JSON bodies and non-success statuses raise HTTPException(500).
    """
    url = f"{config.EPISODE_API_URL}/{quote(slug)}"
    logger.info(f"Fetching episode data: {url}")
    try:
        response = await client.get(url)
        response.raise_for_status()
        payload = response.json()
    except (HTTPStatusError, RequestError, InvalidURL) as e:
        logger.error(f"Episode API error for {slug}: {e}")
        raise HTTPException(status_code=500, detail={"message": "Failed to get video links", "details": str(e)})
    except ValueError as e:
        logger.error(f"Episode API returned invalid JSON for {slug}: {e}")
        raise HTTPException(status_code=500, detail={"message": "Failed to get video links", "details": "Invalid response from episode API"})

    if not isinstance(payload, dict) or payload.get("status") != "success":
        logger.error(f"Episode API returned unexpected payload for {slug}")
        raise HTTPException(status_code=500, detail={"message": "Failed to get video links", "details": "Failed to get episode data"})

    data = payload.get("data")
    return data if isinstance(data, dict) else {}

# Dependency to provide HTTP client
async def get_http_client():
    client = AsyncClient(
        headers={
            "User-Agent": config.USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Referer": config.SCRAPE_REFERER,
        },
        timeout=config.HTTP_TIMEOUT,
        follow_redirects=True
    )
    try:
        yield client
    finally:
        await client.aclose()
