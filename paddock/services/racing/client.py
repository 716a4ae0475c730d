"""
Racing HTTP Client with Rate Limiting
Handles HTTP requests to the racing API with a global request cadence
and classification of every response into success or a typed failure.
"""

import httpx
import asyncio
import time
from typing import Any, Callable, Optional
import logging

from pydantic import TypeAdapter, ValidationError as SchemaValidationError

from paddock.core.config import settings
from paddock.exceptions import (
    DecodingError,
    HttpError,
    NetworkError,
    UnauthorizedError,
)
from .credentials import CredentialStore

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Global minimum-interval rate limiter.

    Every ``acquire()`` returns at least ``min_interval`` seconds after the
    previous one returned, no matter how many tasks call it concurrently.

    Attributes:
        min_interval: Minimum spacing between two granted requests in seconds
        last_granted: Monotonic timestamp of the last grant (None before the first)
    """

    def __init__(
        self,
        min_interval: float = 6.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize rate limiter.

        Args:
            min_interval: Minimum spacing between requests in seconds (default: 6.0)
            clock: Monotonic clock used to measure the spacing
        """
        self.min_interval = min_interval
        self.last_granted: Optional[float] = None
        self._clock = clock
        self.lock = asyncio.Lock()

    async def acquire(self) -> None:
        """
        Wait until the request cadence allows another request.

        The lock is held across the sleep so that the read of the last
        timestamp, the wait and the write of the new timestamp happen as
        one step for every caller.
        """
        async with self.lock:
            if self.last_granted is not None:
                while True:
                    remaining = self.min_interval - (self._clock() - self.last_granted)
                    if remaining <= 0:
                        break
                    logger.debug(f"Rate limiter waiting {remaining:.2f}s")
                    await asyncio.sleep(remaining)

            self.last_granted = self._clock()


class RacingHTTPClient:
    """
    Async HTTP client for the racing API with rate limiting.

    Attaches the RapidAPI headers, passes every request through the shared
    rate limiter and turns the outcome into either a decoded body or one of
    UnauthorizedError, HttpError, NetworkError, DecodingError.
    """

    SERVICE_NAME = "racing-api"

    def __init__(
        self,
        credentials: CredentialStore,
        rate_limiter: Optional[RateLimiter] = None,
        base_url: Optional[str] = None,
        host: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize HTTP client.

        Args:
            credentials: Source of the API key
            rate_limiter: Shared rate limiter (default: one spaced by settings.REQUEST_INTERVAL_SECONDS)
            base_url: API base URL (default: settings.RACING_API_BASE_URL)
            host: Value of the X-RapidAPI-Host header (default: settings.RACING_API_HOST)
            timeout: Transport timeout in seconds (default: settings.HTTP_TIMEOUT_SECONDS)
            transport: Optional httpx transport, used by tests to stub the network
        """
        self.credentials = credentials
        self.base_url = (base_url or settings.RACING_API_BASE_URL).rstrip("/")
        self.host = host or settings.RACING_API_HOST
        self.rate_limiter = rate_limiter or RateLimiter(
            min_interval=settings.REQUEST_INTERVAL_SECONDS
        )
        self.client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS,
            follow_redirects=True,
            transport=transport,
        )

    def _headers(self) -> dict:
        # Raises ValidationError before anything is sent when the key is missing
        api_key = self.credentials.get_api_key()
        return {
            "X-RapidAPI-Key": api_key,
            "X-RapidAPI-Host": self.host,
            "Content-Type": "application/json",
        }

    async def get(self, endpoint: str, response_type: Any = None) -> Any:
        """
        Make GET request to the racing API with rate limiting.

        Args:
            endpoint: API endpoint (e.g., "/racecards")
            response_type: Optional type the JSON body is validated against
                (e.g., List[RaceCard])

        Returns:
            Decoded JSON, or an instance of response_type

        Raises:
            ValidationError: If the API key is missing or malformed
            UnauthorizedError: On 401/403
            HttpError: On any other non-200 status
            NetworkError: On transport failures
            DecodingError: If the body is not JSON or does not match response_type
        """
        headers = self._headers()
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        await self.rate_limiter.acquire()

        logger.debug(f"GET {url} (key {headers['X-RapidAPI-Key'][:8]}...)")
        try:
            response = await self.client.get(url, headers=headers)
        except httpx.TransportError as e:
            logger.error(f"Transport failure for {endpoint}: {str(e)}")
            raise NetworkError(str(e) or type(e).__name__, service=self.SERVICE_NAME) from e

        if response.status_code in (401, 403):
            logger.error(f"Unauthorized response ({response.status_code}) for {endpoint}")
            raise UnauthorizedError(service=self.SERVICE_NAME)
        if response.status_code != 200:
            logger.error(f"HTTP request failed for {endpoint}: {response.status_code}")
            raise HttpError(response.status_code, service=self.SERVICE_NAME)

        try:
            data = response.json()
        except ValueError as e:
            raise DecodingError(f"invalid JSON from {endpoint}", service=self.SERVICE_NAME) from e

        if response_type is None:
            return data

        try:
            return TypeAdapter(response_type).validate_python(data)
        except SchemaValidationError as e:
            logger.error(f"Schema mismatch for {endpoint}: {e.error_count()} errors")
            raise DecodingError(
                f"{endpoint} does not match the expected schema", service=self.SERVICE_NAME
            ) from e

    async def test_connection(self) -> str:
        """
        Issue one request to /racecards to check the key and connectivity.

        Returns:
            Human-readable success message
        """
        await self.get("/racecards")
        return "Connection successful! API is working properly."

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()
