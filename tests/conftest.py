"""
Shared pytest fixtures for headline-harvester tests.

Pages are scripted as dictionaries mapping a CSS selector to the list of
elements it matches. Each element is a dict holding its visible "text" and
any attributes ("href", "src", "content", ...).
"""

import sys
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from browser import RenderingSession, SessionProvider
from database import SeenArticleStore
from extractor import FieldExtractor, ImageValidator
from scraper import ScrapeSettings


class FakeSession(RenderingSession):
    """In-memory rendering session backed by a FakeProvider's pages"""

    def __init__(self, provider: "FakeProvider"):
        self.provider = provider
        self.page = None
        self.url = None
        self.closed = False
        self.scrolls = 0
        self.waited_for = []
        self.pauses = []

    def navigate(self, url, wait_until="domcontentloaded", timeout_ms=60000):
        self.provider.record_navigation(url, timeout_ms)
        delay = self.provider.delays.get(url)
        if delay:
            time.sleep(delay)
        if self.provider.consume_failure(url):
            raise TimeoutError(f"Timeout {timeout_ms}ms exceeded navigating to {url}")
        if url not in self.provider.pages:
            raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.url = url
        self.page = self.provider.pages[url]

    def _elements(self, selector):
        if self.page is None:
            raise RuntimeError("No page loaded")
        return self.page.get(selector, [])

    def wait_for_selector(self, selector, timeout_ms):
        self.waited_for.append(selector)
        if not self._elements(selector):
            raise TimeoutError(f"Timeout {timeout_ms}ms exceeded waiting for {selector}")

    def query_all(self, selector):
        return [
            {"href": element.get("href", ""), "text": element.get("text", "")}
            for element in self._elements(selector)
        ]

    def query_text(self, selector):
        elements = self._elements(selector)
        return elements[0].get("text", "") if elements else None

    def query_attribute(self, selector, name):
        elements = self._elements(selector)
        return elements[0].get(name) if elements else None

    def scroll_to_bottom(self, step_px=300, interval_ms=200, max_ms=30000):
        self.scrolls += 1

    def pause(self, ms):
        self.pauses.append(ms)

    def close(self):
        self.closed = True


class FakeProvider(SessionProvider):
    """
    Hands out FakeSessions over a fixed set of pages.

    failures maps a URL to the number of navigations that fail before it
    loads. delays maps a URL to seconds every navigation to it blocks for.
    """

    def __init__(self, pages=None, failures=None, delays=None):
        self.pages = pages or {}
        self.failures = dict(failures or {})
        self.delays = dict(delays or {})
        self.sessions = []
        self.navigations = []
        self.navigation_timeouts = []
        self.release_calls = 0
        self.closed = False
        self._lock = threading.Lock()

    def record_navigation(self, url, timeout_ms=None):
        with self._lock:
            self.navigations.append(url)
            self.navigation_timeouts.append(timeout_ms)

    def consume_failure(self, url):
        with self._lock:
            remaining = self.failures.get(url, 0)
            if remaining > 0:
                self.failures[url] = remaining - 1
                return True
            return False

    def open_session(self):
        session = FakeSession(self)
        with self._lock:
            self.sessions.append(session)
        return session

    def release(self):
        with self._lock:
            self.release_calls += 1

    def close(self):
        self.closed = True


def article_page(
    headline="Headline",
    content=("Paragraph one.",),
    author=None,
    publish_date=None,
    image_src=None,
):
    """A page using the selectors of the sample_descriptor fixture"""
    page = {}
    if headline is not None:
        page["h1.title"] = [{"text": headline}]
    if content:
        page["div.body p"] = [{"text": text} for text in content]
    if author is not None:
        page["span.author"] = [{"text": author}]
    if publish_date is not None:
        page["time"] = [{"text": "", "datetime": publish_date}]
    if image_src is not None:
        page["figure img"] = [{"src": image_src, "alt": "Image alt"}]
    return page


def listing_page(urls):
    return {"a.headline": [{"href": url, "text": f"Story {i}"} for i, url in enumerate(urls)]}


@pytest.fixture
def fake_provider():
    """Factory for a FakeProvider over the given pages"""

    def _make(pages=None, failures=None, delays=None):
        return FakeProvider(pages, failures, delays)

    return _make


@pytest.fixture
def make_article_page():
    return article_page


@pytest.fixture
def make_listing_page():
    return listing_page


@pytest.fixture
def store(tmp_path):
    """An open SeenArticleStore on a temporary file."""
    seen = SeenArticleStore(str(tmp_path / "data" / "articles.db")).open()
    yield seen
    seen.close()


@pytest.fixture
def fast_settings():
    """Scrape settings with no settling or pacing delays."""
    return ScrapeSettings(listing_settle_ms=0, delay_min_ms=0, delay_max_ms=0)


@pytest.fixture
def image_validator():
    """ImageValidator whose HEAD requests always succeed."""
    session = MagicMock()
    session.head.return_value.status_code = 200
    return ImageValidator(session=session)


@pytest.fixture
def extractor(image_validator):
    return FieldExtractor(image_validator)


@pytest.fixture
def sample_descriptor():
    """A site descriptor matching article_page() and listing_page()."""
    return {
        "headlineUrl": "https://news.example.com/latest",
        "urlHtmlTag": "a.headline",
        "headlineCount": 2,
        "channel": "world",
        "contentHtmlTags": {
            "title": "h1.title",
            "publishDate": "time",
            "author": "span.author",
            "imageHtmlTag": "figure img",
            "newsContent": "div.body p",
        },
    }
