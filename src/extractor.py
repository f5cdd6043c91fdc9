"""
Field extraction by ordered fallback strategies

Each logical article field is resolved from a chain of selector strategies
tried left to right, as listed in FIELD_STRATEGIES. A missing field is a normal
outcome and resolves to an empty string.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urljoin, urlparse

import requests
from requests.exceptions import RequestException

from browser import RenderingSession
from errors import ExtractionError
from logging_config import get_logger
from models import ContentSelectors, SiteDescriptor

logger = get_logger(__name__)

DEFAULT_IMAGE_CHECK_TIMEOUT = 10  # seconds
CONTENT_SEPARATOR = "\n\n"
SRCSET_ATTRIBUTES = ("data-srcset", "srcset")


class ExtractionMode(str, Enum):
    TEXT = "text"
    ATTRIBUTE = "attribute"
    SRCSET_LAST = "srcset-last"


@dataclass(frozen=True)
class SelectorSpec:
    """One field strategy: a selector and how to read a value from it"""

    selector: str
    mode: ExtractionMode = ExtractionMode.TEXT
    attribute: str | None = None

    @classmethod
    def text(cls, selector: str) -> "SelectorSpec":
        return cls(selector, ExtractionMode.TEXT)

    @classmethod
    def attr(cls, selector: str, name: str) -> "SelectorSpec":
        return cls(selector, ExtractionMode.ATTRIBUTE, name)

    @classmethod
    def srcset(cls, selector: str) -> "SelectorSpec":
        return cls(selector, ExtractionMode.SRCSET_LAST)

    def evaluate(self, session: RenderingSession) -> str:
        """Read this strategy's value from the page. May raise."""
        if self.mode is ExtractionMode.TEXT:
            value = session.query_text(self.selector)
        elif self.mode is ExtractionMode.ATTRIBUTE:
            value = session.query_attribute(self.selector, self.attribute or "")
        else:
            value = ""
            for name in SRCSET_ATTRIBUTES:
                srcset = session.query_attribute(self.selector, name)
                if srcset:
                    value = parse_srcset_last(srcset)
                    break
        return (value or "").strip()


def parse_srcset_last(srcset: str) -> str:
    """
    URL of the last srcset candidate (taken as the highest resolution).

    "a.jpg 320w, b.jpg 640w" -> "b.jpg"
    """
    if not srcset:
        return ""
    entries = [entry.strip() for entry in srcset.split(",") if entry.strip()]
    if not entries:
        return ""
    return entries[-1].split()[0]


def resolve(session: RenderingSession, strategies: list[SelectorSpec]) -> str:
    """
    Return the first non-empty value produced by the strategies, in order.

    A failing strategy is logged and skipped. Returns "" if nothing matched.
    """
    for spec in strategies:
        if not spec.selector:
            continue
        try:
            value = spec.evaluate(session)
        except Exception as e:
            error = ExtractionError(spec.selector, spec.mode.value, e)
            logger.debug("Field strategy failed", extra={"error": str(error)})
            continue
        if value:
            return value
    return ""


def absolutize_url(url: str, origin: str) -> str:
    """Resolve a relative or protocol-relative URL against the site origin"""
    if not url:
        return ""
    if url.startswith(("http://", "https://")):
        return url
    if url.startswith("//"):
        scheme = urlparse(origin).scheme or "https"
        return f"{scheme}:{url}"
    return urljoin(origin.rstrip("/") + "/", url)


class ImageValidator:
    """Checks that an image URL is reachable before it is accepted"""

    def __init__(
        self,
        timeout: float = DEFAULT_IMAGE_CHECK_TIMEOUT,
        session: requests.Session | None = None,
    ):
        self.timeout = timeout
        self.session = session or requests.Session()
        self._cache: dict[str, bool] = {}
        self._lock = threading.Lock()

    def verify(self, url: str, timeout: float | None = None) -> str:
        """Return url if a HEAD request succeeds with 2xx, otherwise ''"""
        if not url:
            return ""

        with self._lock:
            cached = self._cache.get(url)
        if cached is not None:
            return url if cached else ""

        reachable = False
        try:
            response = self.session.head(
                url, timeout=timeout if timeout is not None else self.timeout, allow_redirects=True
            )
            reachable = 200 <= response.status_code < 300
            if not reachable:
                logger.debug(
                    "Image rejected",
                    extra={"image_url": url, "status_code": response.status_code},
                )
        except RequestException as e:
            logger.debug("Image check failed", extra={"image_url": url, "error": str(e)})

        with self._lock:
            self._cache[url] = reachable
        return url if reachable else ""


@dataclass(frozen=True)
class StrategyTemplate:
    """
    Strategy pattern for a field.

    key names a contentHtmlTags entry; when fixed is True it is used as a
    literal selector instead.
    """

    key: str
    mode: ExtractionMode = ExtractionMode.TEXT
    attribute: str | None = None
    fixed: bool = False


FIELD_STRATEGIES: dict[str, tuple[StrategyTemplate, ...]] = {
    "headline": (StrategyTemplate("title"),),
    "publishDate": (
        StrategyTemplate("publishDate"),
        StrategyTemplate("publishDate", ExtractionMode.ATTRIBUTE, "content"),
        StrategyTemplate("publishDate", ExtractionMode.ATTRIBUTE, "datetime"),
    ),
    "author": (
        StrategyTemplate("author"),
        StrategyTemplate("author", ExtractionMode.ATTRIBUTE, "content"),
    ),
    "publisher": (
        StrategyTemplate("publisher", ExtractionMode.ATTRIBUTE, "content"),
        StrategyTemplate("publisher"),
    ),
    "imageUrl": (
        StrategyTemplate("imageHtmlTag", ExtractionMode.ATTRIBUTE, "src"),
        StrategyTemplate("imageHtmlTag", ExtractionMode.ATTRIBUTE, "content"),
        StrategyTemplate("imageHtmlTag", ExtractionMode.SRCSET_LAST),
    ),
    "imageAlt": (
        StrategyTemplate("imageHtmlTag", ExtractionMode.ATTRIBUTE, "alt"),
        StrategyTemplate("imageAlt"),
        StrategyTemplate("figure figcaption", fixed=True),
    ),
}


class FieldExtractor:
    """Resolves article fields for a descriptor's selector configuration"""

    def __init__(self, image_validator: ImageValidator | None = None):
        self.image_validator = image_validator or ImageValidator()

    def build_strategies(self, field: str, selectors: ContentSelectors) -> list[SelectorSpec]:
        """
        Expand a field's templates into concrete strategies.

        Templates keep their order; each expands to one strategy per
        configured selector for its key.
        """
        templates = FIELD_STRATEGIES.get(field)
        if templates is None:
            raise KeyError(f"Unknown article field: {field}")

        strategies = []
        for template in templates:
            sources = (template.key,) if template.fixed else selectors.selectors(template.key)
            for selector in sources:
                strategies.append(SelectorSpec(selector, template.mode, template.attribute))
        return strategies

    def extract_field(
        self, session: RenderingSession, field: str, selectors: ContentSelectors
    ) -> str:
        return resolve(session, self.build_strategies(field, selectors))

    def extract_image_url(
        self, session: RenderingSession, descriptor: SiteDescriptor, timeout: float | None = None
    ) -> str:
        """Image URL made absolute against the site origin and checked for reachability"""
        raw_url = self.extract_field(session, "imageUrl", descriptor.content_html_tags)
        if not raw_url:
            return ""
        return self.image_validator.verify(absolutize_url(raw_url, descriptor.origin), timeout)

    def extract_content(self, session: RenderingSession, selectors: ContentSelectors) -> str:
        """Text of every element matching the content selectors, blank-line separated"""
        pieces = []
        for selector in selectors.selectors("newsContent"):
            try:
                elements = session.query_all(selector)
            except Exception as e:
                logger.debug(
                    "Content selector failed",
                    extra={"error": str(ExtractionError(selector, "text", e))},
                )
                continue
            for element in elements:
                text = (element.get("text") or "").strip()
                if text:
                    pieces.append(text)
        return CONTENT_SEPARATOR.join(pieces)
