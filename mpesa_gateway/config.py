from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from mpesa_gateway.settings import Settings, settings as default_settings

logger = logging.getLogger("mpesa_gateway")

BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


def _csv(raw: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in (raw or "").split(",") if p.strip())


@dataclass(frozen=True)
class MpesaConfig:
    consumer_key: str
    consumer_secret: str
    environment: str = "sandbox"  # "sandbox" | "production"
    shortcode: str = ""
    passkey: str = ""
    base_url: str = ""
    http_timeout_s: float = 30.0
    token_cache_s: int = 3000
    retry_max: int = 3
    retry_initial_delay_s: float = 1.0
    retry_max_delay_s: float = 10.0
    rate_limit_enabled: bool = False
    rate_limit_max_requests: int = 100
    rate_limit_window_s: float = 60.0
    rate_limit_redis_url: str = ""
    callback_validate_ip: bool = False
    # empty => gateway defaults
    callback_allowed_ips: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.environment not in BASE_URLS:
            raise ValueError(f"environment must be 'sandbox' or 'production', got {self.environment!r}")

    @property
    def api_base_url(self) -> str:
        return (self.base_url or BASE_URLS[self.environment]).rstrip("/")


def mpesa_config(source: Optional[Settings] = None) -> MpesaConfig:
    s = source or default_settings
    return MpesaConfig(
        consumer_key=(s.MPESA_CONSUMER_KEY or "").strip(),
        consumer_secret=(s.MPESA_CONSUMER_SECRET or "").strip(),
        environment=(s.MPESA_ENV or "sandbox").strip().lower(),
        shortcode=(s.MPESA_SHORTCODE or "").strip(),
        passkey=(s.MPESA_PASSKEY or "").strip(),
        base_url=(s.MPESA_BASE_URL or "").strip(),
        http_timeout_s=float(s.MPESA_HTTP_TIMEOUT_S),
        token_cache_s=int(s.MPESA_TOKEN_CACHE_S),
        retry_max=int(s.MPESA_RETRY_MAX),
        retry_initial_delay_s=float(s.MPESA_RETRY_INITIAL_DELAY_S),
        retry_max_delay_s=float(s.MPESA_RETRY_MAX_DELAY_S),
        rate_limit_enabled=bool(s.MPESA_RATE_LIMIT_ENABLED),
        rate_limit_max_requests=int(s.MPESA_RATE_LIMIT_MAX_REQUESTS),
        rate_limit_window_s=float(s.MPESA_RATE_LIMIT_WINDOW_S),
        rate_limit_redis_url=(s.MPESA_RATE_LIMIT_REDIS_URL or "").strip(),
        callback_validate_ip=bool(s.MPESA_CALLBACK_VALIDATE_IP),
        callback_allowed_ips=_csv(s.MPESA_CALLBACK_ALLOWED_IPS),
    )


def validate_mpesa_settings(source: Optional[Settings] = None) -> None:
    s = source or default_settings
    env = (s.MPESA_ENV or "sandbox").strip().lower()
    strict = bool(s.MPESA_STRICT_STARTUP_VALIDATION)

    logger.info("mpesa startup check: env=%s strict=%s", env, strict)

    if env == "sandbox" and not strict:
        return

    missing: list[str] = []
    for name in ("MPESA_CONSUMER_KEY", "MPESA_CONSUMER_SECRET", "MPESA_SHORTCODE", "MPESA_PASSKEY"):
        if not (getattr(s, name, "") or "").strip():
            missing.append(name)

    if s.MPESA_RATE_LIMIT_ENABLED and s.MPESA_RATE_LIMIT_REDIS_URL:
        if not s.MPESA_RATE_LIMIT_REDIS_URL.startswith(("redis://", "rediss://", "unix://")):
            missing.append("MPESA_RATE_LIMIT_REDIS_URL (redis:// url)")

    if missing:
        raise RuntimeError(
            "M-Pesa startup validation failed. "
            f"env={env} Missing required env vars: " + ", ".join(sorted(missing))
        )
