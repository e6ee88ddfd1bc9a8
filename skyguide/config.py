"""Engine configuration pulled from environment variables via pydantic."""
import os
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


DEFAULT_OVERPASS_ENDPOINTS = [
    "https://overpass-api.de/api/interpreter",
    "https://lz4.overpass-api.de/api/interpreter",
    "https://z.overpass-api.de/api/interpreter",
    "https://overpass.openstreetmap.fr/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://overpass.osm.ch/api/interpreter",
    "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
]

# "{url}" is substituted raw, "{url_encoded}" percent-encoded.
DEFAULT_CORS_PROXIES = [
    "https://cors-anywhere.herokuapp.com/{url}",
    "https://api.allorigins.win/raw?url={url_encoded}",
    "https://api.codetabs.com/v1/proxy?quest={url_encoded}",
]


class Settings(BaseSettings):
    """Environment-driven configuration for the SkyGuide fetch engine."""
    model_config = SettingsConfigDict(env_prefix="SKYGUIDE_", extra="ignore")

    # cache store
    cache_backend: str = "sqlite"  # options: memory, sqlite, redis
    cache_database_url: str = "sqlite:///./skyguide_cache.db"
    cache_redis_url: str | None = None
    cache_default_ttl_seconds: int = 3600
    cache_offline_ttl_seconds: int = 7200
    cache_namespace_limits: dict[str, int] = Field(default_factory=lambda: {"poi": 4})

    # per-domain freshness
    poi_ttl_seconds: int = 86400
    poi_max_cached_items: int = 500
    alerts_ttl_seconds: int = 1800
    insight_ttl_seconds: int = 1200
    weather_ttl_seconds: int = 1800

    # dedup + throttle
    dedup_window_seconds: float = 30.0
    throttle_intervals: dict[str, float] = Field(
        default_factory=lambda: {"forecast": 900.0, "alerts": 60.0}
    )
    throttle_default_interval_seconds: float = 0.0

    # transport / retry
    http_timeout_seconds: float = 10.0
    http_timeout_cap_seconds: float = 20.0
    retry_attempts: int = 3
    retry_backoff_base_seconds: float = 1.0
    retry_backoff_cap_seconds: float = 5.0
    user_agent: str = "skyguide/0.1 (+https://github.com/skyguide)"

    # connectivity
    connectivity_check_url: str = "https://www.google.com/generate_204"
    connectivity_check_timeout_seconds: float = 5.0
    connectivity_check_interval_seconds: float = 30.0
    connectivity_restore_window_seconds: float = 300.0

    # upstreams
    overpass_endpoints: list[str] = Field(default_factory=lambda: list(DEFAULT_OVERPASS_ENDPOINTS))
    dev_mode: bool = False
    cors_proxies: list[str] = Field(default_factory=lambda: list(DEFAULT_CORS_PROXIES))
    aemet_base_url: str = "https://opendata.aemet.es/opendata/api"
    aemet_api_key: str | None = None
    openweather_base_url: str = "https://api.openweathermap.org/data/2.5"
    openweather_api_key: str | None = None

    # narrative backend
    narrative_backend: str = "ollama"  # options: ollama, openai
    narrative_base_url: str = "http://localhost:11434"
    narrative_model: str = "phi4-mini"
    narrative_api_key: str | None = None
    narrative_fallback_urls: list[str] = Field(default_factory=list)
    narrative_max_tokens: int = 150
    narrative_timeout_seconds: float = 60.0
    narrative_replay_chunks: int = 10
    narrative_replay_interval_seconds: float = 0.05
    narrative_auto_pull: bool = True  # pull a missing Ollama model at startup
    skip_backend_check: bool = False
    narrative_options: dict = Field(
        default_factory=lambda: {
            "temperature": float(os.getenv("SKYGUIDE_NARRATIVE_TEMPERATURE", 0.7)),
            "top_p": float(os.getenv("SKYGUIDE_NARRATIVE_TOP_P", 0.9)),
        }
    )

    # HTTP surface
    api_key: str | None = None
    log_level: str = "INFO"
    job_name: str = "skyguide"

    @field_validator(
        "aemet_base_url", "openweather_base_url", "narrative_base_url", mode="after"
    )
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("cache_backend", "narrative_backend", mode="after")
    @classmethod
    def lower_choice(cls, v: str) -> str:
        """Backend selectors are case-insensitive."""
        return str(v).strip().lower()

    def ttl_for(self, namespace: str) -> int:
        """Return the freshness TTL configured for a cache namespace."""
        return {
            "poi": self.poi_ttl_seconds,
            "alerts": self.alerts_ttl_seconds,
            "ai_insights": self.insight_ttl_seconds,
            "weather": self.weather_ttl_seconds,
            "weather_data": self.weather_ttl_seconds,
        }.get(namespace, self.cache_default_ttl_seconds)


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
