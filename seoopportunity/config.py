"""
Runtime settings, read from environment variables (and a local .env file).
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import ConfigurationError

# DataForSEO location code for the whole United States
US_LOCATION_CODE = 2840

DATAFORSEO_BASE_URL = "https://api.dataforseo.com/v3"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


class Settings(BaseModel):
    """Settings shared by the gateway, the AI service and the pipeline stages"""

    dataforseo_login: str = Field(default="", description="DataForSEO API login (email)")
    dataforseo_password: str = Field(default="", description="DataForSEO API password")
    dataforseo_base_url: str = Field(default=DATAFORSEO_BASE_URL, description="DataForSEO v3 base URL")
    request_timeout: float = Field(default=60.0, description="HTTP timeout in seconds")

    gemini_api_key: Optional[str] = Field(default=None, description="Google Gemini API key")
    gemini_model: str = Field(default="gemini-2.0-flash", description="Gemini model name")

    # Polling
    volume_poll_attempts: int = Field(default=20, description="Polling rounds for search volume tasks")
    volume_poll_delay: float = Field(default=3.0, description="Seconds between search volume polls")
    serp_poll_attempts: int = Field(default=20, description="Polling rounds for SERP tasks")
    serp_poll_delay: float = Field(default=10.0, description="Seconds between SERP polls")
    poll_backoff_factor: float = Field(
        default=1.0,
        description="Delay multiplier applied after each polling round (1.0 = fixed delay)",
    )
    max_poll_delay: float = Field(default=30.0, description="Upper bound for the polling delay")

    # Aggregation
    ranking_top_n: int = Field(default=50, description="Keywords (by volume) checked for rankings")
    serp_batch_size: int = Field(default=50, description="SERP tasks submitted per batch")
    competitor_keyword_limit: int = Field(default=30, description="Ranked keywords fetched per competitor")

    # Locations
    location_cache_ttl: float = Field(default=24 * 60 * 60, description="Location table TTL in seconds")
    location_match_threshold: float = Field(default=0.6, description="Minimum fuzzy match score")

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "Settings":
        """Build settings from environment variables."""
        if load_dotenv_file:
            load_dotenv()

        return cls(
            dataforseo_login=os.getenv("DATAFORSEO_LOGIN", ""),
            dataforseo_password=os.getenv("DATAFORSEO_PASSWORD", ""),
            dataforseo_base_url=os.getenv("DATAFORSEO_BASE_URL", DATAFORSEO_BASE_URL),
            request_timeout=_env_float("DATAFORSEO_TIMEOUT", 60.0),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
            volume_poll_attempts=_env_int("VOLUME_POLL_ATTEMPTS", 20),
            volume_poll_delay=_env_float("VOLUME_POLL_DELAY", 3.0),
            serp_poll_attempts=_env_int("SERP_POLL_ATTEMPTS", 20),
            serp_poll_delay=_env_float("SERP_POLL_DELAY", 10.0),
            poll_backoff_factor=_env_float("POLL_BACKOFF_FACTOR", 1.0),
            ranking_top_n=_env_int("RANKING_TOP_N", 50),
            location_cache_ttl=_env_float("LOCATION_CACHE_TTL", 24 * 60 * 60),
        )

    def has_dataforseo_credentials(self) -> bool:
        return bool(self.dataforseo_login and self.dataforseo_password)

    def require_dataforseo_credentials(self) -> None:
        """Raise ConfigurationError when DataForSEO credentials are missing."""
        if not self.has_dataforseo_credentials():
            raise ConfigurationError(
                "DataForSEO credentials are not configured. "
                "Set DATAFORSEO_LOGIN and DATAFORSEO_PASSWORD."
            )
