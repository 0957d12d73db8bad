"""usageWatch settings

Loads configuration from environment variables (.env supported) using pydantic-settings.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    # Core
    database_url: str = Field("sqlite:///./usagewatch.db", alias="DATABASE_URL")
    app_env: str = Field("development", alias="APP_ENV")

    # Reference timezone for hour/day bucket boundaries
    timezone: str = Field("Asia/Shanghai", alias="TIMEZONE")

    # Upstream proxy (CLIProxyAPI management API)
    cliproxy_base_url: str | None = Field(default=None, alias="CLIPROXY_BASE_URL")
    cliproxy_api_key: str | None = Field(default=None, alias="CLIPROXY_API_KEY")
    upstream_timeout_seconds: float = Field(30.0, alias="UPSTREAM_TIMEOUT_SECONDS")

    # Auth
    password: str | None = Field(default=None, alias="PASSWORD")
    cron_secret: str | None = Field(default=None, alias="CRON_SECRET")

    # Pre-aggregation toggles
    enable_preagg: bool = Field(True, alias="ENABLE_PREAGG")
    enable_preagg_read: bool = Field(True, alias="ENABLE_PREAGG_READ")

    # Overview cache
    overview_cache_ttl_seconds: float = Field(30.0, alias="OVERVIEW_CACHE_TTL_SECONDS")
    overview_cache_max_entries: int = Field(100, alias="OVERVIEW_CACHE_MAX_ENTRIES")

    # Web vitals
    vitals_sample_rate: float = Field(0.2, alias="VITALS_SAMPLE_RATE")

    # CORS (comma-separated list; '*' allows all - dev only)
    cors_origins: str = Field("*", alias="CORS_ORIGINS")

    @property
    def is_production(self) -> bool:
        return (self.app_env or "").lower() == "production"


settings = Settings()
