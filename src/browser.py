"""
Rendering sessions for Headline Harvester

The pipeline only talks to the abstract RenderingSession/SessionProvider pair.
PlaywrightSessionProvider is the production implementation; tests substitute
an in-memory provider.
"""

import random
import threading
from abc import ABC, abstractmethod
from typing import Any

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from logging_config import get_logger

logger = get_logger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
]

DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9"
DEFAULT_LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

# Scrolls by step_px every interval_ms until the scrolled distance reaches
# the page's scroll height, or max_ms elapses.
_SCROLL_SCRIPT = """
([stepPx, intervalMs, maxMs]) => new Promise((resolve) => {
    let total = 0;
    const started = Date.now();
    const timer = setInterval(() => {
        const height = document.body ? document.body.scrollHeight : 0;
        window.scrollBy(0, stepPx);
        total += stepPx;
        if (total >= height || Date.now() - started >= maxMs) {
            clearInterval(timer);
            resolve(total);
        }
    }, intervalMs);
})
"""

_ANCHORS_SCRIPT = """
(elements) => elements.map((el) => ({
    href: el.href || el.getAttribute('href') || '',
    text: (el.innerText || el.textContent || '').trim(),
}))
"""


class RenderingSession(ABC):
    """One isolated browsing context (own cookies and storage)"""

    @abstractmethod
    def navigate(self, url: str, wait_until: str = "domcontentloaded", timeout_ms: int = 60000):
        """Load a URL. Raises on failure or timeout."""

    @abstractmethod
    def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        """Block until selector matches. Raises on timeout."""

    @abstractmethod
    def query_all(self, selector: str) -> list[dict[str, str]]:
        """All matches in document order as {'href', 'text'} dicts"""

    @abstractmethod
    def query_text(self, selector: str) -> str | None:
        """Visible text of the first match, None if nothing matches"""

    @abstractmethod
    def query_attribute(self, selector: str, name: str) -> str | None:
        """Attribute of the first match, None if absent"""

    @abstractmethod
    def scroll_to_bottom(self, step_px: int = 300, interval_ms: int = 200, max_ms: int = 30000):
        """Scroll until the page's scroll height is covered (bounded by max_ms)"""

    @abstractmethod
    def pause(self, ms: int) -> None:
        """Let the page settle for a fixed time"""

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self) -> "RenderingSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class SessionProvider(ABC):
    """Opens isolated rendering sessions"""

    @abstractmethod
    def open_session(self) -> RenderingSession:
        pass

    def release(self) -> None:
        """Free resources held for the calling thread"""

    def close(self) -> None:
        """Free all resources"""


class PlaywrightSession(RenderingSession):
    """RenderingSession backed by a Playwright browser context and page"""

    def __init__(self, context: Any, page: Any):
        self.context = context
        self.page = page
        self._closed = False

    def navigate(self, url: str, wait_until: str = "domcontentloaded", timeout_ms: int = 60000):
        self.page.goto(url, wait_until=wait_until, timeout=timeout_ms)

    def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        self.page.wait_for_selector(selector, timeout=timeout_ms)

    def query_all(self, selector: str) -> list[dict[str, str]]:
        return self.page.eval_on_selector_all(selector, _ANCHORS_SCRIPT)

    def query_text(self, selector: str) -> str | None:
        element = self.page.query_selector(selector)
        if element is None:
            return None
        return element.inner_text().strip()

    def query_attribute(self, selector: str, name: str) -> str | None:
        element = self.page.query_selector(selector)
        if element is None:
            return None
        return element.get_attribute(name)

    def scroll_to_bottom(self, step_px: int = 300, interval_ms: int = 200, max_ms: int = 30000):
        return self.page.evaluate(_SCROLL_SCRIPT, [step_px, interval_ms, max_ms])

    def pause(self, ms: int) -> None:
        self.page.wait_for_timeout(ms)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.page.close()
        except PlaywrightError as e:
            logger.debug("Page close failed", extra={"error": str(e)})
        try:
            self.context.close()
        except PlaywrightError as e:
            logger.debug("Context close failed", extra={"error": str(e)})


class PlaywrightSessionProvider(SessionProvider):
    """
    Chromium via the Playwright sync API.

    Playwright objects may only be used from the thread that created them, so
    one driver and browser are started lazily per worker thread and kept in
    thread-local storage. Every session gets a fresh browser context with a
    rotated user agent.
    """

    def __init__(
        self,
        headless: bool = True,
        user_agents: list[str] | None = None,
        accept_language: str = DEFAULT_ACCEPT_LANGUAGE,
        launch_args: list[str] | None = None,
        default_timeout_ms: int = 120000,
    ):
        self.headless = headless
        self.user_agents = user_agents or USER_AGENTS
        self.accept_language = accept_language
        self.launch_args = launch_args if launch_args is not None else DEFAULT_LAUNCH_ARGS
        self.default_timeout_ms = default_timeout_ms
        self._local = threading.local()

    @classmethod
    def from_config(cls, scraping_config: dict[str, Any]) -> "PlaywrightSessionProvider":
        return cls(
            headless=scraping_config.get("headless", True),
            user_agents=scraping_config.get("user_agents") or USER_AGENTS,
            accept_language=scraping_config.get("accept_language", DEFAULT_ACCEPT_LANGUAGE),
        )

    def _browser(self):
        browser = getattr(self._local, "browser", None)
        if browser is None:
            self._local.playwright = sync_playwright().start()
            self._local.browser = self._local.playwright.chromium.launch(
                headless=self.headless, args=self.launch_args
            )
            browser = self._local.browser
            logger.debug(
                "Browser launched",
                extra={"thread": threading.current_thread().name, "headless": self.headless},
            )
        return browser

    def open_session(self) -> RenderingSession:
        user_agent = random.choice(self.user_agents)
        context = self._browser().new_context(
            user_agent=user_agent,
            locale=self.accept_language.split(",")[0],
            extra_http_headers={"Accept-Language": self.accept_language},
        )
        context.set_default_timeout(self.default_timeout_ms)
        page = context.new_page()
        return PlaywrightSession(context, page)

    def release(self) -> None:
        browser = getattr(self._local, "browser", None)
        playwright = getattr(self._local, "playwright", None)
        self._local.browser = None
        self._local.playwright = None

        if browser is not None:
            try:
                browser.close()
            except PlaywrightError as e:
                logger.warning("Browser close failed", extra={"error": str(e)})
        if playwright is not None:
            try:
                playwright.stop()
            except PlaywrightError as e:
                logger.warning("Playwright stop failed", extra={"error": str(e)})

    def close(self) -> None:
        self.release()
