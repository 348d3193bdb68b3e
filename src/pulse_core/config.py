"""Runtime settings loaded from environment variables."""
import logging
import os
from dataclasses import dataclass, field
from typing import Optional


logger = logging.getLogger(__name__)


DEFAULT_PROVIDER_TIMEOUTS: dict[str, float] = {
    "ga4": 30.0,
    "meta_ads": 60.0,
    "tossdown": 55.0,
    "square": 30.0,
}

DEFAULT_CACHE_TTLS: dict[str, int] = {
    "overview": 900,
    "combined": 300,
}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s '%s', using %s", name, raw, default)
        return default


@dataclass
class Settings:
    """Process-wide configuration for adapters, cache and API."""

    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    meta_app_id: Optional[str] = None
    meta_app_secret: Optional[str] = None
    meta_api_version: str = "v24.0"
    square_client_id: Optional[str] = None
    square_client_secret: Optional[str] = None
    square_environment: str = "production"
    tossdown_api_url: str = "https://api.tossdown.com/v1/orders"
    cache_backend: str = "memory"
    redis_url: str = "redis://localhost:6379"
    brand_store_path: Optional[str] = None
    provider_timeouts: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_PROVIDER_TIMEOUTS)
    )
    cache_ttls: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_CACHE_TTLS)
    )

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables.

        Timeouts and TTLs can be overridden one at a time, e.g.
        PULSE_TIMEOUT_META_ADS=90 or PULSE_CACHE_TTL_OVERVIEW=600.
        """
        timeouts = {
            source: _env_float(f"PULSE_TIMEOUT_{source.upper()}", default)
            for source, default in DEFAULT_PROVIDER_TIMEOUTS.items()
        }
        ttls = {
            category: int(_env_float(f"PULSE_CACHE_TTL_{category.upper()}", default))
            for category, default in DEFAULT_CACHE_TTLS.items()
        }

        return cls(
            google_client_id=os.getenv("GOOGLE_OAUTH_CLIENT_ID"),
            google_client_secret=os.getenv("GOOGLE_OAUTH_CLIENT_SECRET"),
            meta_app_id=os.getenv("META_APP_ID"),
            meta_app_secret=os.getenv("META_APP_SECRET"),
            meta_api_version=os.getenv("META_API_VERSION", "v24.0"),
            square_client_id=os.getenv("SQUARE_CLIENT_ID"),
            square_client_secret=os.getenv("SQUARE_CLIENT_SECRET"),
            square_environment=os.getenv("SQUARE_ENVIRONMENT", "production"),
            tossdown_api_url=os.getenv(
                "TOSSDOWN_API_URL", "https://api.tossdown.com/v1/orders"
            ),
            cache_backend=os.getenv("PULSE_CACHE_BACKEND", "memory").lower(),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            brand_store_path=os.getenv("PULSE_BRAND_STORE_PATH"),
            provider_timeouts=timeouts,
            cache_ttls=ttls,
        )

    def timeout_for(self, source: str) -> float:
        return self.provider_timeouts.get(source, 30.0)

    def ttl_for(self, category: str) -> int:
        return self.cache_ttls.get(category, DEFAULT_CACHE_TTLS["overview"])

    def secrets(self) -> list[Optional[str]]:
        """Values that must never appear in logs."""
        return [
            self.google_client_secret,
            self.meta_app_secret,
            self.square_client_secret,
        ]
