"""Configuration settings for DevCast."""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Runtime
    app_env: str = "production"  # "development" bypasses webhook signatures
    log_level: str = "INFO"
    log_json: bool = False

    # Storage
    database_path: Path = Path("devcast.db")

    # AI providers
    openai_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    default_ai_provider: str = "openai"
    openai_model: str = "gpt-4o-mini"
    gemini_model: str = "gemini-2.5-flash"
    ai_temperature: float = 0.7
    ai_max_tokens: int = 150

    # Retry / throttle
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    ai_rate_limit_window_seconds: float = 1.0
    twitter_rate_limit_window_seconds: float = 0.5
    rate_limit_fallback_seconds: float = 15 * 60

    # Timeouts
    ai_request_timeout_seconds: float = 30.0
    http_timeout_seconds: float = 30.0

    # GitHub
    github_api_base: str = "https://api.github.com"
    github_webhook_secret: Optional[str] = None
    sync_lookback_hours: int = 24

    # Telegram
    telegram_bot_token: Optional[str] = None
    telegram_api_base: str = "https://api.telegram.org"

    # Twitter / X
    twitter_api_base: str = "https://api.twitter.com/2"

    # Jobs
    cron_api_key: Optional[str] = None
    analytics_max_age_days: int = 7

    # API Server
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"

    class Config:
        env_prefix = "DEVCAST_"
        env_file = ".env"


settings = Settings()
