"""Fetch book seed documents from an HTTP endpoint."""
from typing import Any, Dict, List
import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

RETRY_STATUSES = (429, 500, 502, 503, 504)


class SeedError(Exception):
    """Seed endpoint unreachable or serving something other than books."""


def extract_seed_items(payload: Any) -> List[Dict[str, Any]]:
    """
    Pull the list of raw book documents out of a seed payload.

    Args:
        payload: Decoded JSON, either [...] or {"books": [...]}

    Returns:
        Raw book documents

    Raises:
        SeedError: if the payload has any other shape
    """
    if isinstance(payload, dict):
        if "books" not in payload:
            raise SeedError("Seed object has no 'books' key")
        payload = payload["books"]

    if not isinstance(payload, list):
        raise SeedError(f"Seed must be a list of books, got {type(payload).__name__}")

    bad = [i for i, item in enumerate(payload) if not isinstance(item, dict)]
    if bad:
        raise SeedError(f"Seed entries at positions {bad[:5]} are not documents")
    return payload


class SeedClient:
    """HTTP client for book seeds; transient failures are retried by the transport."""

    def __init__(
        self,
        timeout: int = 10,
        max_retries: int = 3,
        base_backoff: float = 1.0
    ):
        """
        Initialize seed client.

        Args:
            timeout: Request timeout in seconds
            max_retries: Retries for connection errors, timeouts, 429 and 5xx
            base_backoff: Backoff factor; delays grow as base * 2^attempt
        """
        self.timeout = timeout
        self.retry = Retry(
            total=max_retries,
            backoff_factor=base_backoff,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=frozenset(["GET"]),
            raise_on_status=False,
        )

        self.session = requests.Session()
        adapter = HTTPAdapter(max_retries=self.retry)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def fetch_books(self, url: str) -> List[Dict[str, Any]]:
        """
        Download raw book documents.

        Args:
            url: URL serving a JSON array of books or {"books": [...]}

        Returns:
            Raw book documents, ready for parse_books_response()

        Raises:
            SeedError: on network failure after retries, an error status,
                a non-JSON body or a payload that is not a list of books
        """
        logger.info(f"Fetching seed books from {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise SeedError(f"Could not reach {url}: {e}") from e

        if response.status_code != 200:
            raise SeedError(f"Seed request to {url} failed with status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise SeedError(f"Seed at {url} is not valid JSON: {e}") from e

        items = extract_seed_items(payload)
        logger.info(f"Fetched {len(items)} seed documents")
        return items

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
