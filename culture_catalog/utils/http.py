"""HTTP client with rate limiting and retries."""

import ipaddress
import time
from typing import Any
from urllib.parse import urlparse

import httpx

from ..logger import get_logger

logger = get_logger(__name__)


class SSRFError(ValueError):
    """Raised when a URL targets a private/reserved network address."""


def validate_url(url: str) -> str:
    """Validate that a URL is safe to fetch.

    Rejects non-HTTP(S) schemes, localhost hostnames and private, reserved,
    loopback or link-local IP literals. Source records carry arbitrary
    links, and detail pages are fetched from them.

    Raises:
        SSRFError: If the URL targets a disallowed destination.
    """
    if not url or not isinstance(url, str):
        raise SSRFError("Empty or invalid URL")

    parsed = urlparse(url)

    if parsed.scheme not in ("http", "https"):
        raise SSRFError(f"Blocked non-HTTP scheme: {parsed.scheme!r}")

    hostname = parsed.hostname
    if not hostname:
        raise SSRFError(f"No hostname in URL: {url}")

    _lower = hostname.lower()
    if _lower in ("localhost", "localhost.localdomain") or _lower.endswith(
        ".localhost"
    ):
        raise SSRFError(f"Blocked localhost URL: {url}")

    try:
        addr = ipaddress.ip_address(hostname)
    except ValueError:
        addr = None

    if addr is not None:
        if addr.is_private or addr.is_reserved or addr.is_loopback:
            raise SSRFError(f"Blocked private/reserved IP: {hostname}")
        if addr.is_link_local:
            raise SSRFError(f"Blocked link-local IP: {hostname}")

    return url


class RateLimiter:
    """
    Per-key rate limiter.

    Tracks the last call time for each key (a source id, or a geocoding
    service name) and sleeps until the minimum delay has passed.
    """

    def __init__(self, default_delay: float = 1.0):
        self.default_delay = default_delay
        self._last_request: dict[str, float] = {}
        self._delays: dict[str, float] = {}

    def set_delay(self, key: str, delay: float):
        self._delays[key] = delay

    def wait(self, key: str):
        """Block until ``key`` may make another call."""
        delay = self._delays.get(key, self.default_delay)
        now = time.monotonic()

        if key in self._last_request:
            elapsed = now - self._last_request[key]
            if elapsed < delay:
                wait_time = delay - elapsed
                logger.debug(f"Rate limiting [{key}]: waiting {wait_time:.2f}s")
                time.sleep(wait_time)

        self._last_request[key] = time.monotonic()


class HTTPClient:
    """
    HTTP client with per-key rate limiting and automatic retries.

    Server errors (5xx), 429 and transport errors are retried with
    exponential backoff; other client errors are raised immediately.
    """

    def __init__(
        self,
        timeout: float = 15,
        retry_count: int = 2,
        retry_delay: float = 1.0,
        rate_limit_delay: float = 1.0,
        user_agent: str = "CultureCatalog/1.0",
        verify_ssl: bool = True,
    ):
        """
        Args:
            timeout: Request timeout in seconds
            retry_count: Number of retries after the first attempt
            retry_delay: Base delay between retries (doubled each attempt)
            rate_limit_delay: Default minimum delay between calls per key
            user_agent: User-Agent header value
            verify_ssl: Whether to verify SSL certificates
        """
        self.timeout = timeout
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self.user_agent = user_agent
        self.verify_ssl = verify_ssl

        self.rate_limiter = RateLimiter(default_delay=rate_limit_delay)

        self._client = httpx.Client(
            timeout=timeout,
            headers={"User-Agent": user_agent},
            follow_redirects=True,
            verify=verify_ssl,
        )

    def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        rate_key: str | None = None,
    ) -> httpx.Response:
        """
        Make a GET request with retries.

        Args:
            url: URL to fetch
            params: Optional query parameters
            headers: Optional extra headers
            rate_key: When given, wait on the rate limiter for this key first

        Returns:
            The successful httpx.Response

        Raises:
            SSRFError: If the URL is not allowed
            httpx.HTTPError: If all retries fail or a 4xx is returned
        """
        validate_url(url)

        if rate_key:
            self.rate_limiter.wait(rate_key)

        last_error: httpx.HTTPError | None = None
        for attempt in range(self.retry_count + 1):
            try:
                logger.debug(f"GET {url} (attempt {attempt + 1})")
                response = self._client.get(url, params=params, headers=headers)
                response.raise_for_status()
                return response

            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                if 400 <= status < 500 and status != 429:
                    logger.error(f"HTTP {status} for {url}: {e}")
                    raise
                logger.warning(f"HTTP {status} for {url}, retrying...")

            except httpx.RequestError as e:
                last_error = e
                logger.warning(f"Request error for {url}: {e}, retrying...")

            if attempt < self.retry_count:
                delay = self.retry_delay * (2**attempt)
                logger.debug(f"Waiting {delay:.2f}s before retry")
                time.sleep(delay)

        logger.error(f"All retries failed for {url}")
        raise last_error

    def get_text(self, url: str, rate_key: str | None = None) -> str:
        """Fetch a page and return its body as text."""
        return self.get(url, rate_key=rate_key).text

    def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        rate_key: str | None = None,
    ) -> Any:
        """
        Fetch a URL and decode its JSON body.

        Raises:
            ValueError: If the body is not valid JSON
        """
        response = self.get(url, params=params, headers=headers, rate_key=rate_key)
        return response.json()

    def set_rate_limit(self, key: str, delay: float):
        """Set the minimum delay between calls for one key."""
        self.rate_limiter.set_delay(key, delay)

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
