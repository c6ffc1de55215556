from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -----------------------
    # Environment / credentials
    # -----------------------
    MPESA_ENV: Literal["sandbox", "production"] = "sandbox"
    MPESA_STRICT_STARTUP_VALIDATION: bool = False

    MPESA_CONSUMER_KEY: str = ""
    MPESA_CONSUMER_SECRET: str = ""
    MPESA_SHORTCODE: str = ""
    MPESA_PASSKEY: str = ""

    # Overrides the sandbox/production endpoint table (tests, proxies)
    MPESA_BASE_URL: str = ""

    # -----------------------
    # HTTP + token cache
    # -----------------------
    MPESA_HTTP_TIMEOUT_S: float = Field(default=30.0, gt=0)
    # upstream tokens live 3600s; cache for 50 minutes
    MPESA_TOKEN_CACHE_S: int = Field(default=3000, gt=0)

    # -----------------------
    # Retry
    # -----------------------
    MPESA_RETRY_MAX: int = Field(default=3, ge=0)
    MPESA_RETRY_INITIAL_DELAY_S: float = Field(default=1.0, ge=0)
    MPESA_RETRY_MAX_DELAY_S: float = Field(default=10.0, ge=0)

    # -----------------------
    # Rate limiting
    # -----------------------
    MPESA_RATE_LIMIT_ENABLED: bool = False
    MPESA_RATE_LIMIT_MAX_REQUESTS: int = Field(default=100, gt=0)
    MPESA_RATE_LIMIT_WINDOW_S: float = Field(default=60.0, gt=0)
    MPESA_RATE_LIMIT_REDIS_URL: str = ""

    # -----------------------
    # Callbacks
    # -----------------------
    MPESA_CALLBACK_VALIDATE_IP: bool = False
    MPESA_CALLBACK_ALLOWED_IPS: str = ""  # CSV; empty => Safaricom defaults


settings = Settings()
