# models.py
from pydantic import AliasChoices, BaseModel, Field
from typing import Dict, List, Literal, Optional

class VideoLink(BaseModel):
    url: str = Field(..., description="Link URL")
    quality: str = Field("unknown", description="Quality label: unknown, 480p/720p/..., stream, direct or hls")
    provider: str = Field("unknown", description="Hosting provider label")
    type: Literal["download", "iframe", "stream", "direct"] = Field(..., description="Where the link was found")
    display_text: str = Field(
        "",
        validation_alias=AliasChoices("display_text", "displayText", "text"),
        description="Visible text of the link element",
    )

    class Config:
        frozen = True

class ExtractionResult(BaseModel):
    type: Literal["hls", "mp4"] = Field(..., description="Stream kind")
    url: str = Field(..., description="Stream URL")

    class Config:
        frozen = True

class VideoLinksResponse(BaseModel):
    status: str = Field("success", description="Envelope status")
    episode_slug: str = Field(..., description="Episode slug from the request")
    episode_title: str = Field("Unknown", description="Episode title reported by the upstream API")
    source_url: str = Field(..., description="Episode page that was scraped")
    video_links: List[VideoLink] = Field(default_factory=list, description="Deduplicated video links")
    total_links: int = Field(0, description="Number of video links")

class ResolveRequest(BaseModel):
    embed_url: Optional[str] = Field(None, alias="embedUrl", description="Embed page URL")

    class Config:
        populate_by_name = True

class ResolveResponse(BaseModel):
    status: str = Field("success", description="Envelope status")
    embed_url: str = Field(..., description="Embed page URL")
    direct_url: str = Field(..., description="Direct media URL")

class StreamExtractRequest(BaseModel):
    iframe_url: Optional[str] = Field(None, alias="iframeUrl", description="Player iframe URL")

    class Config:
        populate_by_name = True

class StreamExtractResponse(BaseModel):
    status: str = Field("success", description="Envelope status")
    iframe_url: str = Field(..., description="Player iframe URL")
    stream: ExtractionResult = Field(..., description="Recovered stream")

class GatewayRequest(BaseModel):
    gateway_url: Optional[str] = Field(None, alias="gatewayUrl", description="Safelink/gateway page URL")

    class Config:
        populate_by_name = True

class GatewayResponse(BaseModel):
    status: str = Field("success", description="Envelope status")
    gateway_url: str = Field(..., description="Safelink/gateway page URL")
    download_url: str = Field(..., description="Canonical download URL")

class HistoryUpsert(BaseModel):
    device_id: Optional[str] = Field(None, alias="deviceId", description="Client device identifier")
    anime_slug: Optional[str] = Field(None, alias="animeSlug", description="Anime slug")
    episode_slug: Optional[str] = Field(None, alias="episodeSlug", description="Episode slug")
    last_position: Optional[int] = Field(0, alias="lastPosition", description="Playback position in seconds")

    class Config:
        populate_by_name = True

class HistoryDelete(BaseModel):
    device_id: Optional[str] = Field(None, alias="deviceId", description="Client device identifier")
    episode_slug: Optional[str] = Field(None, alias="episodeSlug", description="Episode slug")

    class Config:
        populate_by_name = True

class HistoryEntry(BaseModel):
    id: int = Field(..., description="Row id")
    device_id: str = Field(..., alias="deviceId", description="Client device identifier")
    anime_slug: Optional[str] = Field(None, alias="animeSlug", description="Anime slug")
    episode_slug: str = Field(..., alias="episodeSlug", description="Episode slug")
    last_position: int = Field(0, alias="lastPosition", description="Playback position in seconds")
    updated_at: str = Field(..., alias="updatedAt", description="Last update time (ISO 8601, UTC)")

    class Config:
        populate_by_name = True
        from_attributes = True

class MessageResponse(BaseModel):
    status: str = Field("success", description="Envelope status")
    message: str = Field(..., description="Human readable result")

class ErrorResponse(BaseModel):
    status: str = Field("error", description="Envelope status")
    message: str = Field(..., description="Error message")
    details: Optional[str] = Field(None, description="Upstream error text, when available")

class AnimeSummary(BaseModel):
    id: str = Field(..., description="Anime slug")
    title: str = Field(..., description="Anime title")
    url: str = Field(..., description="Anime page URL")
    poster: str = Field(..., description="Poster image URL (placeholder when missing)")
    latest_episode: Optional[str] = Field(None, description="Latest episode label, on the latest-releases listing only")
    source: str = Field("samehadaku", description="Catalogue site")

class AnimeEpisodeLink(BaseModel):
    number: str = Field(..., description="Episode label")
    date: str = Field("Unknown", description="Release date text")
    url: str = Field(..., description="Episode page URL")

class AnimeDetail(BaseModel):
    slug: str = Field(..., description="Anime slug")
    title: str = Field(..., description="Anime title")
    poster: Optional[str] = Field(None, description="Poster image URL")
    synopsis: str = Field("", description="First synopsis paragraph")
    info: Dict[str, str] = Field(default_factory=dict, description="Info table (label -> value)")
    episodes: List[AnimeEpisodeLink] = Field(default_factory=list, description="Episode list in page order")

class StreamingLink(BaseModel):
    provider: str = Field(..., description="Player host name")
    url: str = Field(..., description="Player iframe URL")
    type: Literal["iframe"] = Field("iframe", description="Link kind")

class AnimeListResponse(BaseModel):
    status: str = Field("success", description="Envelope status")
    results: List[AnimeSummary] = Field(default_factory=list, description="Anime cards")
    total: int = Field(0, description="Number of results")

class AnimeDetailResponse(BaseModel):
    status: str = Field("success", description="Envelope status")
    anime: AnimeDetail = Field(..., description="Anime detail")

class StreamingLinksResponse(BaseModel):
    status: str = Field("success", description="Envelope status")
    episode_url: str = Field(..., description="Episode page that was scraped")
    streaming_links: List[StreamingLink] = Field(default_factory=list, description="Player iframes, at most five")
    total: int = Field(0, description="Number of links")
