"""
Racing API Service Module
Modular components for racing API integration.
"""

from .client import RateLimiter, RacingHTTPClient
from .cache import InMemoryCache
from .credentials import CredentialStore
from .processors import RacingDataProcessor
from .repository import RacingRepository
from .retry import with_retry
from .source import RacingDataSource
from .service import RacingDataService

__all__ = [
    "RateLimiter",
    "RacingHTTPClient",
    "InMemoryCache",
    "CredentialStore",
    "RacingDataProcessor",
    "RacingRepository",
    "with_retry",
    "RacingDataSource",
    "RacingDataService",
]
