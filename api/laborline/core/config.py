from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "laborline-api"
    environment: str = "dev"
    api_key_header: str = "X-API-Key"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    confirmation_token_ttl_hours: int = 24
    delivery_api_key: str | None = None
    monitoring_api_key: str | None = None
    rate_limit_window_seconds: int = 15 * 60
    rate_limit_max_failed_attempts: int = 5
    rate_limit_cleanup_probability: float = 0.1
    rate_limit_key_salt: str = "laborline-rate-limit"
    redis_url: str | None = None
    otel_enabled: bool = True
    otel_service_name: str = "laborline-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="LL_", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
