# config.py
"""
Runtime settings for the scraper API.

Values come from the environment (a local .env file is loaded first if present).
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

# Upstream sources
EPISODE_API_URL = os.getenv("EPISODE_API_URL", "https://www.sankavollerei.com/anime/episode").rstrip("/")
ANIME_BASE_URL = os.getenv("ANIME_BASE_URL", "https://samehadaku.cc").rstrip("/")
SCRAPE_REFERER = os.getenv("SCRAPE_REFERER", "https://otakudesu.best/")
USER_AGENT = os.getenv(
    "USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "20"))

# Headless browser (milliseconds, Playwright units)
STREAM_TIMEOUT_MS = int(os.getenv("STREAM_TIMEOUT_MS", "20000"))
GATEWAY_TIMEOUT_MS = int(os.getenv("GATEWAY_TIMEOUT_MS", "15000"))
SETTLE_DELAY_MS = int(os.getenv("SETTLE_DELAY_MS", "2000"))
STREAM_REFERER = os.getenv("STREAM_REFERER", "https://otakudesu.cloud/")
GATEWAY_REFERER = os.getenv("GATEWAY_REFERER", "https://desustream.com/")
GATEWAY_TARGET_HOST = os.getenv("GATEWAY_TARGET_HOST", "pixeldrain.com")

# Watch history; an empty path disables the history endpoints
HISTORY_DB_PATH = os.getenv("HISTORY_DB_PATH", "history.db")
