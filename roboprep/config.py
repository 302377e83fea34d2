"""
Configuration and settings for the RoboPrep backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    environment: str = Field(default="development")

    # Database (SQLite file expected, e.g. sqlite:///../roboprep.db)
    database_url: Optional[str] = Field(default=None)
    database_target_version: str = Field(default="2.1.0")
    database_init_version: str = Field(default="2.0.0")
    backup_dir: Optional[str] = Field(default=None)

    # Sessions and cookies
    cookie_name: str = Field(default="robo_auth")
    cookie_secure: bool = Field(default=False)
    cookie_http_only: bool = Field(default=True)
    session_ttl_hours: int = Field(default=12)
    bcrypt_rounds: int = Field(default=12)

    # Bootstrap admin account
    default_admin_email: str = Field(default="admin@example.com")
    default_admin_password: str = Field(default="RoboPrepMe")

    # LLM / Gemini
    gemini_api_key: Optional[str] = Field(default=None)
    gemini_model: str = Field(default="gemini-2.5-flash")
    ai_max_output_tokens: int = Field(default=2048)
    ai_temperature: float = Field(default=0.7)
    ai_max_retries: int = Field(default=3)
    ai_initial_retry_delay: float = Field(default=1.0)

    # Cloudflare Turnstile
    turnstile_secret_key: Optional[str] = Field(default=None)

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
