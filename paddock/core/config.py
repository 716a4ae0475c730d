"""
Configuration settings for the Paddock racing data layer.
Supports testing, development, and production environments.
"""

import os
from typing import Optional
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """
    Application settings with environment-aware configuration.

    Supports three modes:
    - TEST: Used by the test suite
    - DEVELOPMENT: Local runs against the real upstream API
    - PRODUCTION: Deployed service
    """

    # Environment mode: TEST, DEVELOPMENT, or PRODUCTION
    MODE: str = os.getenv("MODE", "DEVELOPMENT").upper()
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Upstream racing API (RapidAPI "Horse Racing USA")
    RACING_API_BASE_URL: str = os.getenv(
        "RACING_API_BASE_URL", "https://horse-racing-usa.p.rapidapi.com"
    )
    RACING_API_HOST: str = os.getenv(
        "RACING_API_HOST", "horse-racing-usa.p.rapidapi.com"
    )
    RACING_API_KEY: Optional[str] = os.getenv("RACING_API_KEY")

    # Request cadence: the upstream allows 10 requests per minute
    REQUEST_INTERVAL_SECONDS: float = float(os.getenv("REQUEST_INTERVAL_SECONDS", "6.0"))
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30.0"))

    # Retry policy
    RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_BASE_DELAY_SECONDS: float = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "2.0"))

    # Caching
    CACHE_TTL_SECONDS: int = int(os.getenv("CACHE_TTL_SECONDS", "300"))
    RESPONSE_CACHE_TTL_SECONDS: int = int(os.getenv("RESPONSE_CACHE_TTL_SECONDS", "60"))

    # Fan-out
    MAX_CONCURRENT_FETCHES: int = int(os.getenv("MAX_CONCURRENT_FETCHES", "4"))
    HORSE_SEARCH_LIMIT: int = int(os.getenv("HORSE_SEARCH_LIMIT", "20"))

    # Background refresh of the race list (minutes of staleness)
    BACKGROUND_REFRESH_MINUTES: int = int(os.getenv("BACKGROUND_REFRESH_MINUTES", "30"))

    class Config:
        """Pydantic configuration."""
        case_sensitive = True
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.MODE == "TEST"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.MODE == "DEVELOPMENT"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.MODE == "PRODUCTION"


# Global settings instance
settings = Settings()
