"""
Racing API Credential Source
Holds the RapidAPI key handed to the HTTP client.
"""
from typing import Optional
import logging

from paddock.exceptions import ValidationError

logger = logging.getLogger(__name__)

MIN_API_KEY_LENGTH = 32


def is_valid_api_key(key: Optional[str]) -> bool:
    """RapidAPI keys are long opaque strings; anything shorter than 32 characters is rejected."""
    if key is None:
        return False
    trimmed = key.strip()
    return bool(trimmed) and len(trimmed) >= MIN_API_KEY_LENGTH


class CredentialStore:
    """
    In-memory credential source.

    Seeded from settings, updated through ``set_api_key`` and cleared
    through ``invalidate`` when the upstream rejects the key.
    """

    def __init__(self, api_key: Optional[str] = None) -> None:
        self._api_key: Optional[str] = None
        if api_key and is_valid_api_key(api_key):
            self._api_key = api_key.strip()
        elif api_key:
            logger.warning("Configured API key has an invalid format and was ignored")

    @property
    def is_configured(self) -> bool:
        return self._api_key is not None

    def get_api_key(self) -> str:
        """
        Return the stored key.

        Raises:
            ValidationError: If no valid key is configured
        """
        if self._api_key is None:
            raise ValidationError(
                "API key not configured. Please enter a valid RapidAPI key (minimum 32 characters)."
            )
        return self._api_key

    def set_api_key(self, api_key: str) -> None:
        """
        Validate and store a new key.

        Raises:
            ValidationError: If the key format is invalid
        """
        if not is_valid_api_key(api_key):
            raise ValidationError(
                "Invalid API key format. Please enter a valid RapidAPI key (minimum 32 characters).",
                details={"min_length": MIN_API_KEY_LENGTH},
            )
        self._api_key = api_key.strip()
        logger.info(f"API key configured: {self._api_key[:8]}...")

    def invalidate(self) -> None:
        """Forget the stored key after the upstream rejected it."""
        if self._api_key is not None:
            logger.warning("Clearing stored API key after an unauthorized response")
        self._api_key = None
