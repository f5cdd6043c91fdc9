"""
Data models for the harvesting pipeline and its HTTP API
"""

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, field_validator


DEFAULT_CHANNEL = "general"

# Keys accepted under a descriptor's contentHtmlTags
CONTENT_SELECTOR_KEYS = (
    "title",
    "publishDate",
    "author",
    "publisher",
    "imageHtmlTag",
    "imageAlt",
    "newsContent",
)


# =============================================================================
# Domain Models
# =============================================================================


@dataclass(frozen=True)
class ContentSelectors:
    """Per-field selector lists taken from a descriptor's contentHtmlTags"""

    fields: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ContentSelectors":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("contentHtmlTags must be an object")

        fields: dict[str, tuple[str, ...]] = {}
        for key, value in data.items():
            if isinstance(value, str):
                selectors = [value]
            elif isinstance(value, (list, tuple)):
                selectors = [v for v in value if isinstance(v, str)]
            else:
                continue
            cleaned = tuple(s.strip() for s in selectors if s and s.strip())
            if cleaned:
                fields[key] = cleaned
        return cls(fields=fields)

    def selectors(self, key: str) -> tuple[str, ...]:
        """Ordered selectors configured for a field (empty if none)"""
        return self.fields.get(key, ())

    def first(self, key: str) -> str | None:
        values = self.selectors(key)
        return values[0] if values else None


@dataclass(frozen=True)
class SiteDescriptor:
    """One scrape target and its extraction rules. Never mutated."""

    headline_url: str
    url_html_tag: str
    headline_count: int = 0
    channel: str = DEFAULT_CHANNEL
    content_html_tags: ContentSelectors = field(default_factory=ContentSelectors)
    webhook: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SiteDescriptor":
        """Parse a caller-supplied descriptor. Raises ValueError if unusable."""
        if not isinstance(data, dict):
            raise ValueError("Site descriptor must be an object")

        headline_url = data.get("headlineUrl")
        if not isinstance(headline_url, str) or not headline_url.strip():
            raise ValueError("headlineUrl is required")
        parsed = urlparse(headline_url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"headlineUrl is not a valid URL: {headline_url}")

        url_html_tag = data.get("urlHtmlTag")
        if not isinstance(url_html_tag, str) or not url_html_tag.strip():
            raise ValueError("urlHtmlTag is required")

        webhook = data.get("webhook")
        if not isinstance(webhook, str) or not webhook.strip():
            webhook = None

        channel = data.get("channel")
        if not isinstance(channel, str) or not channel.strip():
            channel = DEFAULT_CHANNEL

        return cls(
            headline_url=headline_url.strip(),
            url_html_tag=url_html_tag.strip(),
            headline_count=_parse_count(data.get("headlineCount")),
            channel=channel,
            content_html_tags=ContentSelectors.from_dict(data.get("contentHtmlTags")),
            webhook=webhook.strip() if webhook else None,
            raw=dict(data),
        )

    @property
    def origin(self) -> str:
        parsed = urlparse(self.headline_url)
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def hostname(self) -> str:
        return urlparse(self.headline_url).hostname or ""

    @property
    def is_bounded(self) -> bool:
        return self.headline_count > 0

    def max_needed(self, discovered: int) -> int:
        """Requested article count, or everything discovered when unbounded"""
        return self.headline_count if self.is_bounded else discovered


def _parse_count(value: Any) -> int:
    """headlineCount: anything that is not a positive integer means unbounded"""
    if isinstance(value, bool):
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return count if count > 0 else 0


@dataclass(frozen=True)
class HeadlineCandidate:
    url: str
    text: str = ""


@dataclass
class ArticleRecord:
    article_url: str
    channel: str = DEFAULT_CHANNEL
    headline: str = ""
    publish_date: str = ""
    author: str = ""
    publisher: str = ""
    image_url: str = ""
    image_alt: str = ""
    content: str = ""

    @property
    def is_valid(self) -> bool:
        """Only records with both a headline and body text are emitted"""
        return bool(self.headline.strip()) and bool(self.content.strip())

    def to_dict(self) -> dict[str, Any]:
        return {
            "articleUrl": self.article_url,
            "channel": self.channel,
            "headline": self.headline,
            "publishDate": self.publish_date,
            "author": self.author,
            "publisher": self.publisher,
            "imageUrl": self.image_url,
            "imageAlt": self.image_alt,
            "content": self.content,
        }


@dataclass
class SiteResult:
    """Per-site output. Always produced, even when the site failed."""

    source: dict[str, Any]
    content_data: list[ArticleRecord] = field(default_factory=list)
    error: str | None = None
    # Parsed delivery target (SiteDescriptor.webhook); source keeps the raw value
    webhook: str | None = None

    @classmethod
    def failed(cls, source: dict[str, Any], message: str) -> "SiteResult":
        return cls(source=dict(source), content_data=[], error=message)

    @property
    def headline_count(self) -> int:
        return len(self.content_data)

    def to_dict(self) -> dict[str, Any]:
        payload = dict(self.source)
        payload["contentData"] = [record.to_dict() for record in self.content_data]
        payload["headlineCount"] = self.headline_count
        if self.error:
            payload["error"] = self.error
        return payload


# =============================================================================
# Request Models
# =============================================================================


class ScrapeRequest(BaseModel):
    """Request body for POST /scrape"""

    websites: list[Any]

    @field_validator("websites", mode="before")
    @classmethod
    def validate_websites(cls, v: Any) -> Any:
        if not isinstance(v, list):
            raise ValueError("websites must be an array")
        return v


# =============================================================================
# Response Models
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response"""

    status: str
    components: dict[str, str]
    version: str


class ErrorResponse(BaseModel):
    """Standard error response"""

    error: str
    details: str | None = None
