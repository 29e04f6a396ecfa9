from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "City Events"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    database_auto_create_schema: bool = False
    database_echo: bool = False
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5

    # Primary listing provider (DeepSeek)
    deepseek_endpoint: str = "https://api.deepseek.com/v1"
    deepseek_model: str = "deepseek-chat"
    deepseek_api_key: str | None = None
    deepseek_protocol: str = "openai"

    # Verification provider (Qiniu AI gateway)
    qiniu_endpoint: str = "https://api.qnaigc.com/v1"
    qiniu_model: str = "claude-4.5-sonnet"
    qiniu_api_key: str | None = None

    # Ingestion runtime
    cron_city: str = "杭州"
    sync_window_days: int = 30
    sync_target_offset_days: int = 7
    sync_timezone: str = "Asia/Shanghai"
    llm_timeout_seconds: float = 120.0
    verification_max_attempts: int = 3
    verification_backoff_seconds: float = 1.0
    verification_concurrency: int = 1
    verification_min_interval_seconds: float = 0.0

    # Security
    cors_origins: list[str] = []  # Empty by default for security

    # Metrics
    metrics_disable: bool = False
    metrics_namespace: str = "events"

    @property
    def ingestion_configured(self) -> bool:
        """True when both the listing and the verification credentials are present."""
        return bool(self.deepseek_api_key and self.qiniu_api_key)

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
