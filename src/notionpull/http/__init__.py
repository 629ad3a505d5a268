"""HTTP client and rate limiting for notionpull."""

from .client import AsyncHttpClient
from .protocols import HttpClient, HttpResponse
from .rate_limiter import PerHostRateLimiter

__all__ = [
    "AsyncHttpClient",
    "HttpClient",
    "HttpResponse",
    "PerHostRateLimiter",
]
