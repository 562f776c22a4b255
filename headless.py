# headless.py
"""
Headless-browser fallback for players that only expose their stream after
JavaScript runs, and for safelink pages that gate a download host.

One Chromium process is shared by the whole app (BrowserSession). Every
extraction gets its own isolated browser context which is always closed
before the call returns. Failures are logged and reported as "no result".
"""
import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Dict, Iterable, List, Optional

from playwright.async_api import async_playwright, Browser, Playwright

from models import ExtractionResult
import config

logger = logging.getLogger(__name__)

DESKTOP_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
ACCEPT_HEADER = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-web-security",
    "--disable-features=IsolateOrigins,site-per-process",
]

QUOTED_M3U8_PATTERN = re.compile(r'([\'"])(https?://[^\'"]*\.m3u8[^\'"]*)\1')
QUOTED_MP4_PATTERN = re.compile(r'([\'"])(https?://[^\'"]*\.mp4[^\'"]*)\1')

# Collects raw strings only; matching happens in Python
STREAM_PAGE_SCRIPT = """() => {
    const video = document.querySelector('video');
    let videoSrc = null;
    if (video) {
        const source = video.querySelector('source');
        videoSrc = video.src || (source ? source.src : null) || null;
    }
    const scripts = Array.from(document.querySelectorAll('script')).map(s => s.textContent || '');
    return { videoSrc, scripts };
}"""

GATEWAY_PAGE_SCRIPT = """(host) => {
    const anchors = Array.from(document.querySelectorAll(`a[href*="${host}"]`)).map(a => a.href || '');
    const onclicks = Array.from(document.querySelectorAll(`[onclick*="${host}"]`)).map(el => el.getAttribute('onclick') || '');
    const scripts = Array.from(document.querySelectorAll('script')).map(s => s.textContent || '');
    return { anchors, onclicks, scripts };
}"""


class BrowserSession:
    """
    Lazily launched, process-wide Chromium instance.

    acquire() launches the browser on first use; shutdown() closes it and
    the Playwright driver. page() opens an isolated context per call.
    """

    def __init__(self, headless: bool = True):
        self.headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def acquire(self) -> Browser:
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                logger.info("Launching headless Chromium")
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=LAUNCH_ARGS,
                    timeout=30000,
                )
                logger.info("Headless Chromium ready")
            return self._browser

    async def shutdown(self) -> None:
        async with self._lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
                logger.info("Headless Chromium closed")
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    @asynccontextmanager
    async def page(self, referer: str):
        browser = await self.acquire()
        context = await browser.new_context(
            user_agent=DESKTOP_USER_AGENT,
            viewport={"width": 1280, "height": 720},
            extra_http_headers={"Referer": referer, "Accept": ACCEPT_HEADER},
        )
        try:
            yield await context.new_page()
        finally:
            await context.close()


# Pure helpers

def find_quoted_stream_url(scripts: Iterable[str]) -> Optional[str]:
    """First quoted absolute .m3u8 URL in a script, else its first .mp4 URL"""
    for text in scripts:
        if not text:
            continue
        match = QUOTED_M3U8_PATTERN.search(text) or QUOTED_MP4_PATTERN.search(text)
        if match:
            return match.group(2)
    return None

def classify_stream(url: str) -> ExtractionResult:
    return ExtractionResult(type="hls" if ".m3u8" in url else "mp4", url=url)

def pick_stream_url(video_src: Optional[str], scripts: Iterable[str]) -> Optional[ExtractionResult]:
    url = video_src or find_quoted_stream_url(scripts)
    return classify_stream(url) if url else None

def pick_network_stream(media_requests: Iterable[str]) -> Optional[ExtractionResult]:
    """First captured HLS request, then first captured MP4 request"""
    requests = list(media_requests)
    for url in requests:
        if ".m3u8" in url:
            return ExtractionResult(type="hls", url=url)
    for url in requests:
        if ".mp4" in url:
            return ExtractionResult(type="mp4", url=url)
    return None

def is_media_request(url: str, resource_type: str) -> bool:
    return resource_type == "media" or ".m3u8" in url or ".mp4" in url

def normalize_gateway_url(url: Optional[str], host: str = config.GATEWAY_TARGET_HOST) -> Optional[str]:
    """
    Rewrite download-host links to the canonical API-file form.

    https://pixeldrain.com/u/ABC123 -> https://pixeldrain.com/api/file/ABC123
    """
    if not url:
        return None

    escaped = re.escape(host)
    api_match = re.search(escaped + r'/api/file/([a-zA-Z0-9_-]+)', url)
    if api_match:
        return f"https://{host}/api/file/{api_match.group(1)}"

    web_match = re.search(escaped + r'/u/([a-zA-Z0-9_-]+)', url)
    if web_match:
        return f"https://{host}/api/file/{web_match.group(1)}"

    return url

def pick_gateway_link(anchors: Iterable[str], onclicks: Iterable[str], scripts: Iterable[str],
                      host: str = config.GATEWAY_TARGET_HOST) -> Optional[str]:
    """Anchor hrefs first, then onclick handlers, then inline scripts"""
    for href in anchors:
        if href:
            return href

    escaped = re.escape(host)
    for onclick in onclicks:
        match = re.search(escaped + r'/[^\s\'"]+', onclick or "")
        if match:
            return "https://" + match.group(0)

    for text in scripts:
        match = re.search(r'https?://' + escaped + r'/[^\s\'"]+', text or "")
        if match:
            return match.group(0)

    return None


# Browser-driven extraction

async def extract_stream(session: BrowserSession, iframe_url: str,
                         timeout: int = config.STREAM_TIMEOUT_MS) -> Optional[ExtractionResult]:
    """
    Load a player iframe and recover its HLS/MP4 stream.

    A <video> src or a URL quoted in an inline script wins over anything
    seen on the network. Returns None when nothing is found or on failure.
    """
    media_requests: Dict[str, None] = {}

    async def handle_route(route, request):
        if is_media_request(request.url, request.resource_type):
            logger.debug(f"Media request: {request.url[:80]}")
            media_requests[request.url] = None
        await route.continue_()

    try:
        async with session.page(referer=config.STREAM_REFERER) as page:
            logger.info(f"Loading player page: {iframe_url}")
            await page.route("**/*", handle_route)
            await page.goto(iframe_url, wait_until="networkidle", timeout=timeout)
            await page.wait_for_timeout(config.SETTLE_DELAY_MS)

            state = await page.evaluate(STREAM_PAGE_SCRIPT)
    except Exception as e:
        logger.error(f"Stream extraction failed for {iframe_url}: {e}")
        return None

    result = pick_stream_url(state.get("videoSrc"), state.get("scripts") or [])
    if result:
        logger.info(f"Found {result.type} in page: {result.url[:80]}")
        return result

    result = pick_network_stream(media_requests)
    if result:
        logger.info(f"Found {result.type} from network: {result.url[:80]}")
        return result

    logger.warning(f"No video found on {iframe_url}")
    return None

async def extract_gateway_link(session: BrowserSession, gateway_url: str,
                               timeout: int = config.GATEWAY_TIMEOUT_MS,
                               host: str = config.GATEWAY_TARGET_HOST) -> Optional[str]:
    """
    Follow a safelink/gateway page to the download host.

    Returns the canonical API-file URL, or None when no link is found or the
    page fails to load.
    """
    candidates: List[str] = []

    def handle_response(response):
        if host in response.url:
            logger.debug(f"Redirect to {host}: {response.url[:80]}")
            candidates.append(response.url)

    try:
        async with session.page(referer=config.GATEWAY_REFERER) as page:
            logger.info(f"Loading gateway page: {gateway_url}")
            page.on("response", handle_response)
            await page.goto(gateway_url, wait_until="networkidle", timeout=timeout)
            await page.wait_for_timeout(config.SETTLE_DELAY_MS)

            if host in page.url:
                return normalize_gateway_url(page.url, host)

            state = await page.evaluate(GATEWAY_PAGE_SCRIPT, host)
    except Exception as e:
        logger.error(f"Gateway extraction failed for {gateway_url}: {e}")
        return None

    link = pick_gateway_link(state.get("anchors") or [], state.get("onclicks") or [],
                             state.get("scripts") or [], host)
    if link:
        logger.info(f"Found {host} link: {link[:80]}")
        return normalize_gateway_url(link, host)

    if candidates:
        logger.info(f"Found {host} link via redirect: {candidates[-1][:80]}")
        return normalize_gateway_url(candidates[-1], host)

    logger.warning(f"No {host} link found on {gateway_url}")
    return None
