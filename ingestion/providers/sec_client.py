"""
Thin HTTP client for SEC EDGAR.
Every request carries the identifying User-Agent and takes a rate limiter permit first.
"""

import logging
import threading
from typing import Optional

import requests

from ingestion.rate_limiter import RateLimiter


logger = logging.getLogger(__name__)


class SecClientError(Exception):
    """Raised when an SEC request fails (transport error, timeout, non-200 status)."""
    pass


class SecClient:
    """
    Rate-limited GET against SEC endpoints.

    No retries happen here; retry policy belongs to the download pipeline.
    """

    def __init__(
        self,
        user_agent: str,
        rate_limiter: RateLimiter,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        self.user_agent = user_agent
        self.rate_limiter = rate_limiter
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': user_agent,
            'Accept-Encoding': 'gzip, deflate',
        })

    def get_text(self, url: str, cancel_event: Optional[threading.Event] = None) -> str:
        """
        Fetch a URL and return the response body.

        Args:
            url: Absolute URL
            cancel_event: Forwarded to the rate limiter wait

        Returns:
            Response text (may be empty; callers decide what empty means)

        Raises:
            SecClientError: On network failure, timeout, or non-200 status
        """
        self.rate_limiter.acquire(cancel_event)

        try:
            logger.debug(f"GET {url}")
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise SecClientError(f"Timed out after {self.timeout}s fetching {url}") from e
        except requests.exceptions.RequestException as e:
            raise SecClientError(f"Failed to fetch {url}: {e}") from e

        if response.status_code != 200:
            logger.warning(f"HTTP {response.status_code} fetching {url}")
            raise SecClientError(f"HTTP {response.status_code} fetching {url}")

        return response.text

    def close(self) -> None:
        self.session.close()
