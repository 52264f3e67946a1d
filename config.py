"""
Environment-backed settings for the group savings API.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    database_url: str = "sqlite:///./groups.db"

    # JWT
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Invites
    app_url: str = "http://localhost:3000"
    invite_ttl_days: int = 7
    scheduler_enabled: bool = True

    # SMTP; leaving mail_host empty disables email
    mail_host: Optional[str] = None
    mail_port: int = 587
    mail_username: Optional[str] = None
    mail_password: Optional[str] = None
    mail_from: str = "no-reply@groupsavings.app"
    mail_use_tls: bool = True
    mail_use_ssl: bool = False
    mail_timeout_seconds: int = 10

    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
