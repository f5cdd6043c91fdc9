"""
Outbound webhook delivery of site results
"""

import time
from typing import Any

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError, HTTPError

from errors import DeliveryError
from logging_config import get_logger

logger = get_logger(__name__)

# Retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 1.0  # seconds
DEFAULT_TIMEOUT = 30  # seconds


class WebhookDelivery:
    """POSTs site results to their configured webhook. Never raises."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        session: requests.Session | None = None,
    ):
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.initial_delay = initial_delay
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, delivery_config: dict[str, Any]) -> "WebhookDelivery":
        return cls(
            timeout=delivery_config.get("timeout", DEFAULT_TIMEOUT),
            max_retries=delivery_config.get("max_retries", DEFAULT_MAX_RETRIES),
            initial_delay=delivery_config.get("initial_delay", DEFAULT_INITIAL_DELAY),
        )

    def _retry_with_backoff(self, func, url: str) -> bool:
        """
        Execute a request function with exponential backoff.

        Timeouts, connection errors, 5xx and 429 responses are retried. Other
        4xx responses fail immediately since a retry would not change them.

        Returns:
            True if successful, False if all retries exhausted
        """
        last_error: DeliveryError | None = None

        for attempt in range(self.max_retries):
            try:
                func()
                return True
            except Timeout as e:
                last_error = DeliveryError(url, f"timed out: {e}")
            except ConnectionError as e:
                last_error = DeliveryError(url, f"connection failed: {e}")
            except HTTPError as e:
                status_code = e.response.status_code if e.response is not None else None
                last_error = DeliveryError(url, str(e), status_code=status_code)
                if status_code is not None and 400 <= status_code < 500 and status_code != 429:
                    logger.error(
                        "Webhook rejected payload",
                        extra={"webhook": url, "status_code": status_code, "error": str(e)},
                    )
                    return False
            except RequestException as e:
                last_error = DeliveryError(url, str(e))

            logger.warning(
                "Webhook delivery attempt failed",
                extra={
                    "webhook": url,
                    "attempt": attempt + 1,
                    "max_attempts": self.max_retries,
                    "error": str(last_error),
                },
            )

            if attempt < self.max_retries - 1:
                delay = self.initial_delay * (2**attempt)
                logger.debug("Retrying webhook", extra={"webhook": url, "delay_seconds": delay})
                time.sleep(delay)

        logger.error(
            "Webhook delivery failed after all retries",
            extra={"webhook": url, "attempts": self.max_retries, "last_error": str(last_error)},
        )
        return False

    def deliver(self, url: str, payload: dict[str, Any]) -> bool:
        """Send one site result. Failures are logged and swallowed."""

        def send_request():
            response = self.session.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()

        try:
            success = self._retry_with_backoff(send_request, url)
        except Exception as e:
            # Payload encoding or other non-network faults
            logger.error(
                "Webhook delivery crashed",
                extra={"webhook": url, "error_type": type(e).__name__, "error": str(e)},
            )
            return False

        if success:
            logger.info(
                "Webhook delivered",
                extra={"webhook": url, "articles": payload.get("headlineCount", 0)},
            )
        return success
