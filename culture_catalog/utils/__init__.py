"""Utility modules for fetching and parsing."""

from .http import HTTPClient, RateLimiter, SSRFError, validate_url
from .parser import HTMLParser

__all__ = [
    "HTMLParser",
    "HTTPClient",
    "RateLimiter",
    "SSRFError",
    "validate_url",
]
