from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CACHEGRAPH_", env_file=".env", extra="ignore")

    app_name: str = "cachegraph"

    # Store backend: "memory" or "redis"
    store_backend: str = "memory"
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")

    # Namespace for every rendered store key
    key_prefix: str = "cachegraph"

    # Default lifetime for entries written without an explicit TTL (1 hour)
    default_ttl: int = 3600

    # Hard bound on keys visited by one dependency/hierarchy traversal
    max_traversal: int = 10000

    # Compare-and-swap retries before atomic_update gives up
    cas_max_retries: int = 5

    # Metadata tracking
    track_metadata: bool = True
    track_access: bool = True
    access_history_limit: int = 100

    # Scheduler: tasks whose entry has less than this many seconds left are due
    refresh_margin: int = 60

    # Policy thresholds used by maintenance and scheduling heuristics
    high_access_threshold: int = 100
    predicted_usage_threshold: int = 50
    health_refresh_threshold: float = 5000.0
    preload_ttl_threshold: int = 600
    promotion_access_threshold: int = 50
    promotion_ttl_threshold: int = 3600
    ttl_optimization_pivot: int = 600
    ttl_optimization_step: int = 300

    # Observability
    enable_metrics: bool = True
    log_level: str = "INFO"
    log_json: bool = False


settings = Settings()
