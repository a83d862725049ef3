from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Core API Settings
    api_host: str = Field("0.0.0.0", alias="API_HOST")
    api_port: int = Field(8000, alias="API_PORT")
    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    service_name: str = Field("traffic-inspector", alias="SERVICE_NAME")

    # Durable store (recommendations, routes, examples, interceptor configs)
    database_url: str = Field("sqlite:///./traffic_advisor.db", alias="DATABASE_URL")
    # Ephemeral store (fingerprints, route templates, dedup guards)
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")
    redis_key_prefix: str = Field("traffic-inspector", alias="REDIS_KEY_PREFIX")
    redis_socket_timeout_sec: float = Field(5.0, alias="REDIS_SOCKET_TIMEOUT_SEC")

    # Fleet directory (control plane)
    control_plane_url: str = Field("http://control-plane.plt.local", alias="CONTROL_PLANE_URL")
    internal_domain_suffix: str = Field("plt.local", alias="INTERNAL_DOMAIN_SUFFIX")
    domains_cache_ttl_sec: int = Field(60, alias="DOMAINS_CACHE_TTL_SEC")
    # Shorter TTL for a map built while some applications were unreachable
    domains_partial_cache_ttl_sec: int = Field(5, alias="DOMAINS_PARTIAL_CACHE_TTL_SEC")
    collaborator_timeout_sec: float = Field(10.0, alias="COLLABORATOR_TIMEOUT_SEC")

    # Retry policy for collaborator calls
    retry_max_attempts: int = Field(3, alias="RETRY_MAX_ATTEMPTS")
    retry_max_delay_sec: float = Field(10.0, alias="RETRY_MAX_DELAY_SEC")

    # Ephemeral windows (seconds)
    recommendation_time_window_sec: int = Field(3600, alias="RECOMMENDATION_TIME_WINDOW_SEC")
    request_cache_ttl_sec: int = Field(86400, alias="REQUEST_CACHE_TTL_SEC")
    route_cache_ttl_sec: int = Field(86400, alias="ROUTE_CACHE_TTL_SEC")
    route_example_cache_ttl_sec: int = Field(86400, alias="ROUTE_EXAMPLE_CACHE_TTL_SEC")

    # Batch generation
    generation_interval_sec: int = Field(3600, alias="GENERATION_INTERVAL_SEC")
    generation_lock_ttl_sec: int = Field(900, alias="GENERATION_LOCK_TTL_SEC")
    recommendation_review_window_hours: int = Field(72, alias="RECOMMENDATION_REVIEW_WINDOW_HOURS")

    # Scoring tunables (calibrate against real traffic)
    recommendation_score_threshold: float = Field(0.6, alias="RECOMMENDATION_SCORE_THRESHOLD")
    recommendation_history_length: int = Field(10, alias="RECOMMENDATION_HISTORY_LENGTH")
    recommendation_decay_factor: float = Field(0.5, alias="RECOMMENDATION_DECAY_FACTOR")
    recommendation_expected_ids: int = Field(100, alias="RECOMMENDATION_EXPECTED_IDS")
    recommendation_history_weight: float = Field(0.2, alias="RECOMMENDATION_HISTORY_WEIGHT")
    recommendation_past_score_weight: float = Field(0.1, alias="RECOMMENDATION_PAST_SCORE_WEIGHT")
    recommendation_scale_factor: float = Field(1000.0, alias="RECOMMENDATION_SCALE_FACTOR")
    recommendation_scale_sigma: float = Field(100.0, alias="RECOMMENDATION_SCALE_SIGMA")
    recommendation_base_ttl: int = Field(60, alias="RECOMMENDATION_BASE_TTL")
    recommendation_min_ttl: int = Field(1, alias="RECOMMENDATION_MIN_TTL")
    recommendation_max_ttl: int = Field(3600, alias="RECOMMENDATION_MAX_TTL")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "allow"  # Allow extra environment variables


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reset_settings():
    """Clear cached settings (useful in tests when env vars change)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
