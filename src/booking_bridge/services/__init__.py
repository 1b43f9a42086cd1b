"""Service clients for the booking platform API."""

from .platform_client import PlatformClient
from .record_fetcher import DateWindow, FetchOptions, RecordFetcher

__all__ = [
    "DateWindow",
    "FetchOptions",
    "PlatformClient",
    "RecordFetcher",
]
