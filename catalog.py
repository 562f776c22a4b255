# catalog.py
"""
Anime catalogue scraping (samehadaku): latest releases, search, anime detail
with its episode list, and the player iframes of an episode page.

Upstream fetch errors are raised as HTTPException: 404 when the page does not
exist, 502 for other upstream statuses, 503 for network errors.
"""
from httpx import AsyncClient, HTTPStatusError, InvalidURL, RequestError
from bs4 import BeautifulSoup
from urllib.parse import quote, urlparse
import logging
from fastapi import HTTPException
from typing import List, Optional
from models import AnimeDetail, AnimeEpisodeLink, AnimeSummary, StreamingLink
import config

logger = logging.getLogger(__name__)

SOURCE_NAME = "samehadaku"
PLACEHOLDER_POSTER = "https://via.placeholder.com/150x225?text=No+Image"
MAX_LIST_RESULTS = 20
MAX_STREAMING_LINKS = 5

async def fetch_soup(url: str, client: AsyncClient) -> BeautifulSoup:
    logger.info(f"Fetching catalogue page: {url}")
    try:
        response = await client.get(url)
        response.raise_for_status()
    except HTTPStatusError as e:
        status_code = e.response.status_code
        logger.error(f"HTTP error {status_code} while scraping {url}: {e}")
        if status_code == 404:
            raise HTTPException(status_code=404, detail=f"Page not found: {url}")
        raise HTTPException(status_code=502, detail={"message": "Failed to fetch data", "details": str(e)})
    except (RequestError, InvalidURL) as e:
        logger.error(f"Network error while scraping {url}: {e}")
        raise HTTPException(status_code=503, detail={"message": "Network error", "details": str(e)})

    return BeautifulSoup(response.text or "", "html.parser")

def slug_from_url(url: str) -> str:
    # https://host/<slug>/... -> <slug>
    parts = url.split("/")
    return parts[3] if len(parts) > 3 else ""

def parse_anime_cards(soup: BeautifulSoup, with_episode: bool = False) -> List[AnimeSummary]:
    """Read the article cards of a listing page (home page or search results)"""
    results = []
    for article in soup.select(".post-show article"):
        anchor = article.select_one(".title a")
        if not anchor:
            continue
        title = anchor.get_text().strip()
        url = anchor.get("href")
        if not title or not url:
            continue

        image = article.find("img")
        latest_episode = None
        if with_episode:
            episode_tag = article.select_one(".episode")
            latest_episode = (episode_tag.get_text().strip() if episode_tag else "") or "Unknown"

        results.append(AnimeSummary(
            id=slug_from_url(url),
            title=title,
            url=url,
            poster=(image.get("src") if image else None) or PLACEHOLDER_POSTER,
            latest_episode=latest_episode,
            source=SOURCE_NAME,
        ))
    return results[:MAX_LIST_RESULTS]

def parse_anime_detail(soup: BeautifulSoup, slug: str) -> Optional[AnimeDetail]:
    title_tag = soup.select_one(".title-content h1")
    title = title_tag.get_text().strip() if title_tag else ""
    if not title:
        return None

    poster_tag = soup.select_one(".overview img")
    synopsis_tag = soup.select_one(".overview p")

    info = {}
    for item in soup.select(".info-content .item-info"):
        label = item.find("h3")
        value = item.find("span")
        label = label.get_text().strip() if label else ""
        value = value.get_text().strip() if value else ""
        if label and value:
            info[label] = value

    episodes = []
    for index, item in enumerate(soup.select(".lstepsiode .item ul li")):
        anchor = item.find("a")
        href = anchor.get("href") if anchor else None
        if not href:
            continue
        number = item.select_one(".ep-num")
        date = item.select_one(".date")
        episodes.append(AnimeEpisodeLink(
            number=(number.get_text().strip() if number else "") or f"Episode {index + 1}",
            date=(date.get_text().strip() if date else "") or "Unknown",
            url=href,
        ))

    return AnimeDetail(
        slug=slug,
        title=title,
        poster=poster_tag.get("src") if poster_tag else None,
        synopsis=synopsis_tag.get_text().strip() if synopsis_tag else "",
        info=info,
        episodes=episodes,
    )

def host_of(url: str) -> str:
    try:
        return urlparse(url).hostname or "unknown"
    except ValueError:
        return "unknown"

def parse_streaming_links(soup: BeautifulSoup) -> List[StreamingLink]:
    links = []
    for iframe in soup.find_all("iframe"):
        src = iframe.get("src") or iframe.get("data-src")
        if not src:
            continue
        links.append(StreamingLink(provider=host_of(src), url=src))
    return links[:MAX_STREAMING_LINKS]

async def scrape_latest_anime(client: AsyncClient) -> List[AnimeSummary]:
    soup = await fetch_soup(f"{config.ANIME_BASE_URL}/", client)
    animes = parse_anime_cards(soup, with_episode=True)
    if not animes:
        logger.warning("No anime found on the home page")
        raise HTTPException(status_code=404, detail="No anime found")
    logger.info(f"Scraped {len(animes)} latest anime")
    return animes

async def scrape_anime_search(query: str, client: AsyncClient) -> List[AnimeSummary]:
    soup = await fetch_soup(f"{config.ANIME_BASE_URL}/?s={quote(query)}", client)
    results = parse_anime_cards(soup)
    if not results:
        logger.warning(f"No anime found for search term: {query}")
        raise HTTPException(status_code=404, detail=f"No anime found for search term: {query}")
    return results

async def scrape_anime_detail(slug: str, client: AsyncClient) -> AnimeDetail:
    """Anime title, poster, synopsis, info table and episode list"""
    soup = await fetch_soup(f"{config.ANIME_BASE_URL}/anime/{quote(slug)}/", client)
    detail = parse_anime_detail(soup, slug)
    if detail is None:
        logger.warning(f"No anime detail found for: {slug}")
        raise HTTPException(status_code=404, detail=f"Anime not found: {slug}")
    return detail

async def scrape_streaming_links(episode_url: str, client: AsyncClient) -> List[StreamingLink]:
    soup = await fetch_soup(episode_url, client)
    links = parse_streaming_links(soup)
    if not links:
        raise HTTPException(status_code=404, detail="No streaming links found")
    return links
