"""Utility modules for the import pipeline."""

from importer.utils.http import HTTPError, RateLimitError, fetch_with_retry
from importer.utils.logging import setup_logging

__all__ = [
    # HTTP utilities
    "fetch_with_retry",
    "HTTPError",
    "RateLimitError",
    # Logging
    "setup_logging",
]
