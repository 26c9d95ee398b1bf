"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    allowed_origins: str = ""  # Comma-separated CORS origins (auto-includes localhost)

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (webhook locks, worker heartbeats, alert cooldowns)
    redis_url: str = "redis://localhost:6379/0"

    # Inbound webhook
    webhook_signing_key: str = ""  # When set, X-Webhook-Signature is required

    # GoHighLevel
    ghl_api_base_url: str = "https://services.leadconnectorhq.com"
    ghl_api_version: str = "2021-07-28"
    ghl_timeout_seconds: float = 10.0

    # CRM sync worker
    crm_sync_enabled: bool = True
    crm_sync_poll_seconds: int = 30
    crm_sync_max_retries: int = 5

    # Alerting
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for critical alerts

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
