"""
Headline discovery and article scraping for configured news sites

Pipeline per site: discover headline links on the listing page, drop the ones
already in the seen-article store, then extract each remaining article in
order with randomized pacing between fetches. Sites are isolated from each
other: one site's failure is recorded in its own result.
"""

import random
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, fields
from typing import Any
from urllib.parse import urlparse

from browser import PlaywrightSessionProvider, RenderingSession, SessionProvider
from config_validator import load_config
from database import RETENTION_DAYS, SeenArticleStore
from delivery import WebhookDelivery
from errors import ArticleError, Result, SiteError, StoreError
from extractor import FieldExtractor, ImageValidator
from logging_config import get_logger
from models import ArticleRecord, HeadlineCandidate, SiteDescriptor, SiteResult
from navigation import CancelToken, navigate, navigate_or_raise

logger = get_logger(__name__)

RUN_CANCELLED_MESSAGE = "Run deadline exceeded"


def _bounded_ms(cancel: CancelToken | None, ms: int) -> int:
    return cancel.bound_ms(ms) if cancel is not None else ms


@dataclass
class ScrapeSettings:
    """Timing and pacing knobs from the scraping section of settings.yaml"""

    max_workers: int = 1
    run_timeout_seconds: float = 600
    navigation_timeout_ms: int = 60000
    navigation_attempts: int = 3
    selector_timeout_ms: int = 20000
    listing_settle_ms: int = 3000
    scroll_max_ms: int = 30000
    delay_min_ms: float = 5000
    delay_max_ms: float = 12000
    backfill_seen: bool = True
    image_check_timeout: float = 10

    @classmethod
    def from_config(cls, scraping_config: dict[str, Any] | None) -> "ScrapeSettings":
        scraping_config = scraping_config or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in scraping_config.items() if k in known})


class RateLimiter:
    """
    Randomized pause between article fetches.

    Draws a uniform delay in [min_ms, max_ms] to approximate human browsing
    cadence. Advisory pacing only, not a hard request ceiling.
    """

    def __init__(self, min_ms: float = 5000, max_ms: float = 12000):
        if min_ms < 0 or max_ms < 0:
            raise ValueError("delays must be >= 0")
        if min_ms > max_ms:
            raise ValueError(f"min_ms ({min_ms}) must be <= max_ms ({max_ms})")
        self.min_ms = min_ms
        self.max_ms = max_ms

    def wait(
        self,
        min_ms: float | None = None,
        max_ms: float | None = None,
        cancel: CancelToken | None = None,
    ) -> float:
        """
        Suspend for a random delay.

        Returns:
            The drawn delay in seconds
        """
        low = self.min_ms if min_ms is None else min_ms
        high = self.max_ms if max_ms is None else max_ms
        if low > high:
            raise ValueError(f"min_ms ({low}) must be <= max_ms ({high})")

        delay = random.uniform(low, high) / 1000.0
        logger.debug("Pacing before next article", extra={"delay_seconds": round(delay, 2)})

        if cancel is not None:
            cancel.wait(delay)
        else:
            time.sleep(delay)
        return delay


class HeadlineDiscoverer:
    """Reads headline links from a site's listing page"""

    def __init__(self, settings: ScrapeSettings):
        self.settings = settings

    def discover(
        self,
        session: RenderingSession,
        descriptor: SiteDescriptor,
        truncate: bool = True,
        cancel: CancelToken | None = None,
    ) -> list[HeadlineCandidate]:
        """
        Headline candidates in document order.

        Links without an http(s) URL are dropped, as are repeats of a URL
        already seen on the same page. With truncate, the list is cut to the
        descriptor's requested count (unbounded keeps everything).

        Raises:
            NavigationError: If the listing page could not be loaded
        """
        navigate_or_raise(
            session,
            descriptor.headline_url,
            timeout_ms=self.settings.navigation_timeout_ms,
            attempts=self.settings.navigation_attempts,
            cancel=cancel,
        )
        if self.settings.listing_settle_ms:
            session.pause(_bounded_ms(cancel, self.settings.listing_settle_ms))

        candidates = []
        seen_urls = set()
        for anchor in session.query_all(descriptor.url_html_tag):
            url = (anchor.get("href") or "").strip()
            if urlparse(url).scheme not in ("http", "https") or url in seen_urls:
                continue
            seen_urls.add(url)
            candidates.append(HeadlineCandidate(url=url, text=(anchor.get("text") or "").strip()))

        discovered = len(candidates)
        if truncate:
            candidates = candidates[: descriptor.max_needed(discovered)]

        logger.info(
            "Discovered headlines",
            extra={
                "url": descriptor.headline_url,
                "discovered": discovered,
                "kept": len(candidates),
            },
        )
        return candidates


class ArticleProcessor:
    """Extracts, validates and records a single article"""

    def __init__(
        self,
        provider: SessionProvider,
        store: SeenArticleStore,
        extractor: FieldExtractor,
        settings: ScrapeSettings,
    ):
        self.provider = provider
        self.store = store
        self.extractor = extractor
        self.settings = settings

    def process(
        self,
        descriptor: SiteDescriptor,
        candidate: HeadlineCandidate,
        cancel: CancelToken | None = None,
    ) -> Result[ArticleRecord, ArticleError]:
        """
        Scrape one article in its own session.

        The record is accepted (and its URL recorded as seen) only if it has
        both a headline and body content. Any failure is returned as an
        ArticleError so sibling articles carry on, except StoreError which
        aborts the run.

        With a cancel token, every wait inside the article is capped at the
        time left before the run deadline.
        """
        url = candidate.url
        session = None
        try:
            logger.info("Scraping article", extra={"url": url})
            session = self.provider.open_session()

            outcome = navigate(
                session,
                url,
                timeout_ms=self.settings.navigation_timeout_ms,
                attempts=self.settings.navigation_attempts,
                cancel=cancel,
            )
            if not outcome.ok:
                return Result.failure(ArticleError(url, str(outcome.error)))

            self._load_lazy_content(session, descriptor, cancel)

            record = self._build_record(session, descriptor, url, cancel)
            if record is None:
                logger.warning("Skipped article missing headline or content", extra={"url": url})
                return Result.failure(
                    ArticleError(url, "missing headline or content", skipped=True)
                )

            self.store.record(url)
            logger.info("Added article", extra={"url": url, "channel": record.channel})
            return Result.success(record)

        except StoreError:
            raise
        except Exception as e:
            logger.error(
                "Error scraping article",
                extra={"url": url, "error_type": type(e).__name__, "error": str(e)},
            )
            return Result.failure(ArticleError(url, str(e)))
        finally:
            if session is not None:
                self._close(session, url)

    def _load_lazy_content(
        self, session: RenderingSession, descriptor: SiteDescriptor, cancel: CancelToken | None
    ) -> None:
        """Scroll to trigger lazy loading, then wait for the body selector"""
        try:
            session.scroll_to_bottom(max_ms=_bounded_ms(cancel, self.settings.scroll_max_ms))
        except Exception as e:
            logger.warning("Scroll failed", extra={"error": str(e)})

        wait_selector = descriptor.content_html_tags.first("newsContent")
        if not wait_selector:
            return
        try:
            session.wait_for_selector(
                wait_selector, _bounded_ms(cancel, self.settings.selector_timeout_ms)
            )
        except Exception as e:
            logger.warning(
                "Content selector not found",
                extra={"selector": wait_selector, "error": str(e)},
            )

    def _build_record(
        self,
        session: RenderingSession,
        descriptor: SiteDescriptor,
        url: str,
        cancel: CancelToken | None = None,
    ) -> ArticleRecord | None:
        selectors = descriptor.content_html_tags
        extract = self.extractor.extract_field

        record = ArticleRecord(
            article_url=url,
            channel=descriptor.channel,
            headline=extract(session, "headline", selectors),
            content=self.extractor.extract_content(session, selectors),
        )
        if not record.is_valid:
            return None

        record.publish_date = extract(session, "publishDate", selectors)
        record.author = extract(session, "author", selectors)
        record.publisher = extract(session, "publisher", selectors) or descriptor.hostname
        image_timeout = None
        if cancel is not None and cancel.deadline is not None:
            validator_timeout = self.extractor.image_validator.timeout
            image_timeout = max(0.001, cancel.bound_seconds(validator_timeout))
        record.image_url = self.extractor.extract_image_url(session, descriptor, image_timeout)
        record.image_alt = extract(session, "imageAlt", selectors)
        return record

    def _close(self, session: RenderingSession, url: str) -> None:
        try:
            session.close()
        except Exception as e:
            logger.warning("Failed to close article session", extra={"url": url, "error": str(e)})


class SiteOrchestrator:
    """Discover -> Filter -> Extract -> Aggregate for one site"""

    def __init__(
        self,
        provider: SessionProvider,
        store: SeenArticleStore,
        discoverer: HeadlineDiscoverer,
        processor: ArticleProcessor,
        rate_limiter: RateLimiter,
        backfill_seen: bool = True,
    ):
        self.provider = provider
        self.store = store
        self.discoverer = discoverer
        self.processor = processor
        self.rate_limiter = rate_limiter
        # Filter seen URLs before applying the requested count, so that
        # already-delivered headlines are replaced by later ones
        self.backfill_seen = backfill_seen

    def run(
        self, data: dict[str, Any], cancel: CancelToken | None = None
    ) -> Result[SiteResult, SiteError]:
        """
        Scrape one site.

        Failures inside the site are returned as SiteError; StoreError is
        re-raised because the run cannot continue without dedup.
        """
        source = data if isinstance(data, dict) else {}
        site_url = str(source.get("headlineUrl", ""))

        if cancel is not None and cancel.cancelled:
            return Result.failure(SiteError(site_url, RUN_CANCELLED_MESSAGE))

        try:
            descriptor = SiteDescriptor.from_dict(data)
            logger.info("Scraping headlines", extra={"url": descriptor.headline_url})

            candidates = self._discover(descriptor, cancel)
            fresh = self._filter(descriptor, candidates)
            if not fresh:
                logger.warning(
                    "All headlines already seen, skipping site",
                    extra={"url": descriptor.headline_url, "discovered": len(candidates)},
                )
                return Result.success(
                    SiteResult(source=descriptor.raw, webhook=descriptor.webhook)
                )

            records, cancelled = self._extract(descriptor, fresh, cancel)
            result = SiteResult(
                source=descriptor.raw,
                content_data=records,
                error=RUN_CANCELLED_MESSAGE if cancelled else None,
                webhook=descriptor.webhook,
            )
            if not records:
                logger.warning(
                    "No new articles fetched, skipping webhook",
                    extra={"url": descriptor.headline_url},
                )
            else:
                logger.info(
                    "Site complete",
                    extra={"url": descriptor.headline_url, "articles": len(records)},
                )
            return Result.success(result)

        except StoreError:
            raise
        except Exception as e:
            logger.error(
                "Error scraping site",
                extra={"url": site_url, "error_type": type(e).__name__, "error": str(e)},
            )
            if cancel is not None and cancel.cancelled:
                return Result.failure(SiteError(site_url, RUN_CANCELLED_MESSAGE))
            return Result.failure(SiteError(site_url, str(e) or type(e).__name__))

    def scrape_site(self, data: dict[str, Any], cancel: CancelToken | None = None) -> SiteResult:
        """Like run(), but always returns a SiteResult"""
        outcome = self.run(data, cancel)
        if outcome.ok:
            return outcome.value
        source = data if isinstance(data, dict) else {}
        return SiteResult.failed(source, outcome.error.message)

    def _discover(
        self, descriptor: SiteDescriptor, cancel: CancelToken | None = None
    ) -> list[HeadlineCandidate]:
        session = self.provider.open_session()
        try:
            return self.discoverer.discover(
                session, descriptor, truncate=not self.backfill_seen, cancel=cancel
            )
        finally:
            try:
                session.close()
            except Exception as e:
                logger.warning("Failed to close listing session", extra={"error": str(e)})

    def _filter(
        self, descriptor: SiteDescriptor, candidates: list[HeadlineCandidate]
    ) -> list[HeadlineCandidate]:
        fresh = [c for c in candidates if not self.store.has(c.url)]
        fresh = fresh[: descriptor.max_needed(len(fresh))]
        logger.info(
            "Filtered seen headlines",
            extra={
                "url": descriptor.headline_url,
                "candidates": len(candidates),
                "fresh": len(fresh),
            },
        )
        return fresh

    def _extract(
        self,
        descriptor: SiteDescriptor,
        candidates: list[HeadlineCandidate],
        cancel: CancelToken | None,
    ) -> tuple[list[ArticleRecord], bool]:
        """
        Process candidates in order until the requested count is reached.

        Returns:
            (accepted records in discovery order, whether the run was cancelled)
        """
        max_needed = descriptor.max_needed(len(candidates))
        records: list[ArticleRecord] = []

        for index, candidate in enumerate(candidates):
            if len(records) >= max_needed:
                break
            if index > 0:
                self.rate_limiter.wait(cancel=cancel)
            if cancel is not None and cancel.cancelled:
                logger.warning(
                    "Run cancelled, stopping site early",
                    extra={"url": descriptor.headline_url, "articles": len(records)},
                )
                return records, True

            outcome = self.processor.process(descriptor, candidate, cancel)
            if outcome.ok:
                records.append(outcome.value)
            if cancel is not None and cancel.cancelled:
                logger.warning(
                    "Run deadline reached during article",
                    extra={"url": candidate.url, "articles": len(records)},
                )
                return records, True

        return records, False


class ScraperManager:
    """
    Runs every requested site and aggregates their results.

    Sites run on a thread pool (max_workers=1 means strictly sequential);
    results keep the input order. The whole batch is bounded by the run
    timeout, after which remaining work is cancelled.
    """

    def __init__(
        self,
        config: dict[str, Any],
        store: SeenArticleStore,
        provider: SessionProvider | None = None,
        delivery: WebhookDelivery | None = None,
        image_validator: ImageValidator | None = None,
    ):
        self.config = config
        scraping_config = config.get("scraping", {})
        self.settings = ScrapeSettings.from_config(scraping_config)
        self.retention_days = config.get("store", {}).get("retention_days", RETENTION_DAYS)

        self.store = store
        self._owns_provider = provider is None
        self.provider = provider or PlaywrightSessionProvider.from_config(scraping_config)
        self.delivery = delivery or WebhookDelivery.from_config(config.get("delivery", {}))

        extractor = FieldExtractor(
            image_validator or ImageValidator(timeout=self.settings.image_check_timeout)
        )
        self.orchestrator = SiteOrchestrator(
            provider=self.provider,
            store=self.store,
            discoverer=HeadlineDiscoverer(self.settings),
            processor=ArticleProcessor(self.provider, self.store, extractor, self.settings),
            rate_limiter=RateLimiter(self.settings.delay_min_ms, self.settings.delay_max_ms),
            backfill_seen=self.settings.backfill_seen,
        )

    def close(self) -> None:
        if self._owns_provider:
            self.provider.close()

    def scrape_websites(self, site_descriptors: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Scrape all sites and return one result dict per descriptor, in order.

        Raises:
            TypeError: If site_descriptors is not a list
            StoreError: If the seen-article store fails
        """
        if not isinstance(site_descriptors, (list, tuple)):
            raise TypeError("site descriptors must be a list")

        self.store.sweep(self.retention_days)

        cancel = CancelToken.with_timeout(self.settings.run_timeout_seconds)
        results = self._run_sites(list(site_descriptors), cancel)

        logger.info(
            "Scraping finished",
            extra={
                "sites": len(results),
                "articles": sum(r.headline_count for r in results),
                "failed_sites": sum(1 for r in results if r.error),
            },
        )
        return [result.to_dict() for result in results]

    def _run_sites(self, descriptors: list[Any], cancel: CancelToken) -> list[SiteResult]:
        if not descriptors:
            return []

        workers = max(1, min(self.settings.max_workers, len(descriptors)))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="site")
        try:
            futures = [executor.submit(self._run_site, data, cancel) for data in descriptors]

            done, not_done = wait(futures, timeout=cancel.remaining(), return_when=FIRST_EXCEPTION)
            if not_done:
                if any(f.exception() is not None for f in done):
                    logger.error("Store failure, cancelling remaining sites")
                else:
                    logger.warning(
                        "Run deadline reached, cancelling remaining sites",
                        extra={"pending_sites": len(not_done)},
                    )
                cancel.cancel()
                wait(not_done)

            # Raises StoreError if any worker hit one
            return [future.result() for future in futures]
        finally:
            executor.shutdown(wait=True)

    def _run_site(self, data: Any, cancel: CancelToken) -> SiteResult:
        try:
            result = self.orchestrator.scrape_site(data, cancel)
        finally:
            self._release_provider()

        if result.content_data and result.webhook:
            if cancel.cancelled:
                logger.warning(
                    "Run deadline reached, skipping webhook",
                    extra={"webhook": result.webhook, "articles": result.headline_count},
                )
            else:
                self.delivery.deliver(result.webhook, result.to_dict())
        return result

    def _release_provider(self) -> None:
        """Free this worker's browser; errors are logged, not raised"""
        try:
            self.provider.release()
        except Exception as e:
            logger.warning(
                "Failed to release browser for worker",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )


def scrape_websites(
    site_descriptors: list[dict[str, Any]],
    config: dict[str, Any] | None = None,
    store: SeenArticleStore | None = None,
    provider: SessionProvider | None = None,
    delivery: WebhookDelivery | None = None,
) -> list[dict[str, Any]]:
    """
    Scrape the given sites and return one result per descriptor.

    Opens (and closes) the configured seen-article store unless one is passed in.

    Raises:
        TypeError: If site_descriptors is not a list
        StoreError: If the seen-article store is unavailable
    """
    if not isinstance(site_descriptors, (list, tuple)):
        raise TypeError("site descriptors must be a list")

    config = config or load_config()
    owns_store = store is None
    if store is None:
        store = SeenArticleStore(config["store"]["path"]).open()

    try:
        manager = ScraperManager(config, store, provider=provider, delivery=delivery)
        try:
            return manager.scrape_websites(site_descriptors)
        finally:
            manager.close()
    finally:
        if owns_store:
            store.close()
