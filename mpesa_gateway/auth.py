from __future__ import annotations

import base64
import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from mpesa_gateway.base import AuthTransport, Clock
from mpesa_gateway.config import MpesaConfig
from mpesa_gateway.errors import MpesaError, network_error, timeout_error
from mpesa_gateway.retry import RetryExecutor, RetryOptions

logger = logging.getLogger("mpesa_gateway.auth")

TOKEN_PATH = "/oauth/v1/generate?grant_type=client_credentials"
REQUEST_TIMEOUT_S = 30.0
# Tokens live 1 hour upstream; keep them for 50 minutes
TOKEN_CACHE_S = 50 * 60
TOKEN_SAFETY_MARGIN_S = 10 * 60
# A refresh abandoned at the deadline keeps its worker until the transport returns
REFRESH_WORKERS = 4


@dataclass(frozen=True)
class CachedToken:
    value: str
    expires_at: float

    def usable(self, now: float) -> bool:
        return now < self.expires_at


def _log_retry(error: BaseException, attempt: int) -> None:
    logger.warning("retrying authentication attempt=%s err=%s", attempt, error)


class TokenCache:
    def __init__(
        self,
        config: MpesaConfig,
        transport: AuthTransport,
        *,
        clock: Clock = time.time,
        retry: Optional[RetryExecutor] = None,
        timeout_s: float = REQUEST_TIMEOUT_S,
        cache_duration_s: float = TOKEN_CACHE_S,
    ) -> None:
        self.config = config
        self.transport = transport
        self._clock = clock
        self._retry = retry or RetryExecutor(
            RetryOptions(max_retries=3, initial_delay_s=1.0, on_retry=_log_retry)
        )
        self.timeout_s = timeout_s
        self.cache_duration_s = cache_duration_s
        self._token: Optional[CachedToken] = None
        self._lock = threading.Lock()
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=REFRESH_WORKERS, thread_name_prefix="mpesa-token"
        )

    @property
    def base_url(self) -> str:
        return self.config.api_base_url

    @property
    def cached(self) -> Optional[CachedToken]:
        return self._token

    def get_access_token(self) -> str:
        token = self._token
        if token and token.usable(self._clock()):
            return token.value

        # One refresh in flight; callers that waited re-check the fresh entry
        with self._lock:
            token = self._token
            if token and token.usable(self._clock()):
                return token.value
            return self._retry.execute(self._refresh)

    def invalidate(self) -> None:
        self._token = None

    def close(self) -> None:
        self._token = None
        self._pool.shutdown(wait=False)

    def _refresh(self) -> str:
        credentials = f"{self.config.consumer_key}:{self.config.consumer_secret}"
        authorization = "Basic " + base64.b64encode(credentials.encode("utf-8")).decode("ascii")

        started = self._clock()
        future = self._pool.submit(
            self.transport.fetch_token,
            f"{self.base_url}{TOKEN_PATH}",
            authorization=authorization,
            timeout_s=self.timeout_s,
        )
        try:
            # Hard deadline for the whole call; httpx only bounds each read/write
            grant = future.result(timeout=self.timeout_s)
        except MpesaError:
            raise
        except (concurrent.futures.TimeoutError, TimeoutError) as exc:
            future.cancel()
            raise timeout_error("Request timed out while getting access token") from exc
        except Exception as exc:
            raise network_error(f"Failed to get access token: {exc}", True, exc) from exc

        now = self._clock()
        if now - started > self.timeout_s:
            raise timeout_error("Request timed out while getting access token")

        self._token = CachedToken(value=grant.access_token, expires_at=now + self._cache_duration(grant.expires_in))
        logger.info("access token refreshed env=%s", self.config.environment)
        return grant.access_token

    def _cache_duration(self, declared_lifetime: Optional[int]) -> float:
        if declared_lifetime is None or declared_lifetime <= 0:
            return self.cache_duration_s
        return max(0.0, min(self.cache_duration_s, declared_lifetime - TOKEN_SAFETY_MARGIN_S))


def generate_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("ascii")
