"""
Bounded-retry navigation and run-wide cancellation
"""

import threading
import time

from browser import RenderingSession
from errors import NavigationError, Result
from logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_NAVIGATION_ATTEMPTS = 3
DEFAULT_NAVIGATION_TIMEOUT_MS = 60000
DEFAULT_WAIT_UNTIL = "domcontentloaded"


class CancelToken:
    """
    Run-wide cancellation flag with an optional wall-clock deadline.

    Shared by every site worker of one run. Waiting on the token returns
    early as soon as the run is cancelled, and bound_ms()/bound_seconds()
    cap a blocking call's own timeout at the time left before the deadline.
    """

    def __init__(self, deadline: float | None = None):
        self.deadline = deadline
        self._event = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: float | None) -> "CancelToken":
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self._event.set()
            return True
        return False

    def remaining(self) -> float | None:
        """Seconds until the deadline, None if there is none"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def bound_seconds(self, seconds: float) -> float:
        remaining = self.remaining()
        if remaining is None:
            return seconds
        return min(seconds, remaining)

    def bound_ms(self, ms: int) -> int:
        """ms capped at the time left, never below 1 (0 means no timeout to Playwright)"""
        remaining = self.remaining()
        if remaining is None:
            return ms
        return max(1, min(ms, int(remaining * 1000)))

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds; returns True if the run was cancelled meanwhile"""
        self._event.wait(max(0.0, self.bound_seconds(seconds)))
        return self.cancelled


def navigate(
    session: RenderingSession,
    url: str,
    timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
    attempts: int = DEFAULT_NAVIGATION_ATTEMPTS,
    wait_until: str = DEFAULT_WAIT_UNTIL,
    backoff_seconds: float = 0.0,
    cancel: CancelToken | None = None,
) -> Result[None, NavigationError]:
    """
    Load one URL, retrying a failed attempt up to a fixed bound.

    Each attempt gets its own timeout. This wraps a single navigation only;
    callers must not use it to retry multi-step work.

    Args:
        session: Session to navigate
        url: Target URL
        timeout_ms: Timeout for each attempt
        attempts: Maximum number of attempts (at least 1)
        wait_until: Load state passed to the session
        backoff_seconds: Base delay between attempts, doubled each retry (0 = none)
        cancel: Run token; no attempt starts once it is cancelled and each
            attempt's timeout is capped at the time left

    Returns:
        Result with no value on success, or a NavigationError after the last failure
    """
    attempts = max(1, attempts)
    last_error: Exception | None = None
    made = 0

    for attempt in range(attempts):
        if cancel is not None and cancel.cancelled:
            logger.warning(
                "Run cancelled, abandoning navigation",
                extra={"url": url, "attempt": attempt + 1},
            )
            break

        attempt_timeout = cancel.bound_ms(timeout_ms) if cancel is not None else timeout_ms
        made += 1
        try:
            session.navigate(url, wait_until=wait_until, timeout_ms=attempt_timeout)
            if attempt > 0:
                logger.info(
                    "Navigation succeeded after retry", extra={"url": url, "attempt": attempt + 1}
                )
            return Result.success()
        except Exception as e:
            last_error = e
            logger.warning(
                "Navigation attempt failed",
                extra={
                    "url": url,
                    "attempt": attempt + 1,
                    "max_attempts": attempts,
                    "error": str(e),
                },
            )

        if attempt < attempts - 1 and backoff_seconds > 0:
            delay = backoff_seconds * (2**attempt)
            logger.debug("Retrying navigation", extra={"url": url, "delay_seconds": delay})
            if cancel is not None:
                cancel.wait(delay)
            else:
                time.sleep(delay)

    if last_error is None:
        last_error = TimeoutError("run deadline exceeded before navigation")
    logger.error("Navigation failed after all attempts", extra={"url": url, "attempts": made})
    return Result.failure(NavigationError(url, made, last_error))


def navigate_or_raise(session: RenderingSession, url: str, **kwargs) -> None:
    """Same as navigate() but raises NavigationError on failure"""
    navigate(session, url, **kwargs).unwrap()
