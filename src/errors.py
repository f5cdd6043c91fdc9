"""
Error taxonomy and Result container for the harvesting pipeline.

Errors are contained at the smallest scope that keeps partial results:
articles fail individually, sites fail individually, and only StoreError
aborts a whole run.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E", bound=Exception)


class HarvesterError(Exception):
    """Base class for all pipeline errors."""

    pass


class NavigationError(HarvesterError):
    """Raised when a page could not be loaded after all attempts."""

    def __init__(self, url: str, attempts: int, cause: Exception | None = None):
        self.url = url
        self.attempts = attempts
        self.cause = cause
        reason = str(cause) if cause else "unknown error"
        super().__init__(f"Navigation to {url} failed after {attempts} attempt(s): {reason}")


class ExtractionError(HarvesterError):
    """A single selector strategy failed. Always recovered locally."""

    def __init__(self, selector: str, mode: str, cause: Exception | None = None):
        self.selector = selector
        self.mode = mode
        self.cause = cause
        super().__init__(f"Strategy {mode}({selector!r}) failed: {cause}")


class ArticleError(HarvesterError):
    """Processing one article failed; the article is skipped."""

    def __init__(self, url: str, message: str, skipped: bool = False):
        self.url = url
        self.message = message
        # True when the page loaded but lacked a headline or body
        self.skipped = skipped
        super().__init__(f"{url}: {message}")


class SiteError(HarvesterError):
    """Processing one site failed; recorded into that site's result."""

    def __init__(self, url: str, message: str):
        self.url = url
        self.message = message
        super().__init__(message)


class StoreError(HarvesterError):
    """The seen-article store is unavailable. Fatal for the run."""

    pass


class DeliveryError(HarvesterError):
    """Outbound webhook delivery failed. Logged and discarded."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(f"Delivery to {url} failed: {message}")


@dataclass(frozen=True)
class Result(Generic[T, E]):
    """
    Outcome of a pipeline stage: either a value or an error, never both.
    """

    value: T | None = None
    error: E | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T = None) -> "Result[T, E]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: E) -> "Result[T, E]":
        if error is None:
            raise ValueError("failure() requires an error")
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value, or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value
