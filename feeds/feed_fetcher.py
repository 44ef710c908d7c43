"""HTTP fetcher for external booking calendar feeds."""
import logging
import time

import requests

from processor.errors import FetchError

logger = logging.getLogger(__name__)


class FeedFetcher:
    """Downloads iCalendar feeds with a per-request timeout and retries."""

    HEADERS = {
        'User-Agent': 'rental-calendar-sync/1.0',
        'Accept': 'text/calendar, text/plain;q=0.9, */*;q=0.5'
    }

    def __init__(self, timeout: int = 30, max_retries: int = 3, backoff_seconds: float = 1.0):
        """
        Initialize the feed fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per feed before giving up (default: 3)
            backoff_seconds: Base delay for exponential backoff
        """
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds

    def fetch(self, url: str) -> str:
        """
        Fetch a feed document with retry logic.

        Args:
            url: Feed URL

        Returns:
            Feed text

        Raises:
            FetchError: If all retry attempts fail (timeouts included)
        """
        for attempt in range(self.max_retries):
            try:
                logger.info(
                    f"Fetching feed (attempt {attempt + 1}/{self.max_retries})",
                    extra={'url': url}
                )
                response = requests.get(
                    url,
                    headers=self.HEADERS,
                    timeout=self.timeout
                )
                response.raise_for_status()
                return self._decode(response)

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = self.backoff_seconds * (2 ** attempt)
                    logger.warning(
                        f"Feed request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} attempts to fetch feed failed. Last error: {e}"
                    )
                    raise FetchError(url, f"{type(e).__name__}: {e}") from e

    @staticmethod
    def _decode(response: requests.Response) -> str:
        # requests falls back to ISO-8859-1 for text/* without a charset;
        # iCalendar content is UTF-8 unless the server says otherwise
        if 'charset' in response.headers.get('Content-Type', '').lower():
            return response.text
        return response.content.decode('utf-8', errors='replace')
