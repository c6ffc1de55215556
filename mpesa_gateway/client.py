from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Optional, TypeVar, Union

from mpesa_gateway.auth import TokenCache
from mpesa_gateway.base import CallbackLogger, Clock, DuplicatePredicate, Observer, ValidationPredicate
from mpesa_gateway.callbacks.handler import MpesaCallbackHandler
from mpesa_gateway.callbacks.models import CallbackKind, CallbackResult
from mpesa_gateway.config import MpesaConfig, mpesa_config
from mpesa_gateway.errors import ErrorKind, MpesaError, parse_api_error
from mpesa_gateway.http import HttpClient
from mpesa_gateway.rate_limit import InMemoryRateLimiter, RedisRateLimiter
from mpesa_gateway.retry import RetryExecutor, RetryOptions
from mpesa_gateway.settings import Settings

logger = logging.getLogger("mpesa_gateway.client")

T = TypeVar("T")

RateLimiter = Union[InMemoryRateLimiter, RedisRateLimiter]


def _build_rate_limiter(config: MpesaConfig, clock: Clock) -> Optional[RateLimiter]:
    if not config.rate_limit_enabled:
        return None
    if config.rate_limit_redis_url:
        return RedisRateLimiter.from_url(
            config.rate_limit_redis_url,
            config.rate_limit_max_requests,
            config.rate_limit_window_s,
            clock=clock,
        )
    return InMemoryRateLimiter(config.rate_limit_max_requests, config.rate_limit_window_s, clock=clock)


class MpesaClient:
    """
    Facade over the token cache, retry executor, rate limiter and callback
    handler. Everything is constructed per instance; pass a transport, clock
    or sleep to run without the network.
    """

    def __init__(
        self,
        config: MpesaConfig,
        *,
        transport: Any = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        rand: Optional[Callable[[], float]] = None,
        rate_limiter: Optional[RateLimiter] = None,
        on_success: Optional[Observer] = None,
        on_failure: Optional[Observer] = None,
        on_callback: Optional[Observer] = None,
        is_duplicate: Optional[DuplicatePredicate] = None,
        on_c2b_validation: Optional[ValidationPredicate] = None,
        callback_logger: Optional[CallbackLogger] = None,
    ) -> None:
        self.config = config
        self._clock = clock or time.time
        self._owns_transport = transport is None
        self.transport = transport or HttpClient(timeout_s=config.http_timeout_s)

        self.retry = RetryExecutor(
            RetryOptions(
                max_retries=config.retry_max,
                initial_delay_s=config.retry_initial_delay_s,
                max_delay_s=config.retry_max_delay_s,
            ),
            sleep=sleep or time.sleep,
            rand=rand or random.random,
        )
        self.tokens = TokenCache(
            config,
            self.transport,
            clock=self._clock,
            # request() retries the whole call, token fetch included
            retry=RetryExecutor(RetryOptions(max_retries=0)),
            timeout_s=config.http_timeout_s,
            cache_duration_s=config.token_cache_s,
        )
        self._owns_rate_limiter = rate_limiter is None
        self.rate_limiter = rate_limiter if rate_limiter is not None else _build_rate_limiter(config, self._clock)

        self.callbacks = MpesaCallbackHandler(
            on_success=on_success,
            on_failure=on_failure,
            on_callback=on_callback,
            is_duplicate=is_duplicate,
            on_c2b_validation=on_c2b_validation,
            validate_ip=config.callback_validate_ip,
            allowed_ips=config.callback_allowed_ips or None,
            logger=callback_logger,
        )

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None, **kwargs: Any) -> "MpesaClient":
        return cls(mpesa_config(source), **kwargs)

    # ---------------------------
    # Outbound
    # ---------------------------

    def get_access_token(self) -> str:
        return self.execute(self.tokens.get_access_token)

    def execute(self, operation: Callable[[], T], options: Optional[RetryOptions] = None) -> T:
        return self.retry.execute(operation, options)

    def check_rate_limit(self, key: str) -> None:
        if self.rate_limiter is not None:
            self.rate_limiter.check_limit(key)

    def request(self, path: str, body: dict[str, Any], rate_limit_key: Optional[str] = None) -> Any:
        if rate_limit_key:
            self.check_rate_limit(rate_limit_key)

        url = f"{self.config.api_base_url}/{path.lstrip('/')}"

        def _call() -> Any:
            token = self.tokens.get_access_token()
            resp = self.transport.post_json(url, token=token, body=body, timeout_s=self.config.http_timeout_s)
            if not resp.ok:
                err = parse_api_error(resp.status_code, resp.json)
                if err.kind == ErrorKind.AUTH:
                    # Rejected token: next attempt fetches a fresh one
                    self.tokens.invalidate()
                raise err
            return resp.json

        try:
            return self.execute(_call)
        except MpesaError as e:
            logger.warning("mpesa request failed path=%s kind=%s status=%s", path, e.kind.value, e.status_code)
            raise

    # ---------------------------
    # Inbound
    # ---------------------------

    def parse_callback(self, payload: Any, kind: Optional[CallbackKind] = None) -> CallbackResult:
        return self.callbacks.parse_callback(payload, kind)

    def handle_callback(
        self,
        payload: Any,
        source_ip: Optional[str] = None,
        kind: Optional[CallbackKind] = None,
    ) -> dict[str, Any]:
        return self.callbacks.handle_callback(payload, source_ip, kind)

    def handle_c2b_validation(self, payload: Any) -> bool:
        return self.callbacks.handle_c2b_validation(payload)

    # ---------------------------
    # Lifecycle
    # ---------------------------

    def destroy(self) -> None:
        if self.rate_limiter is not None and self._owns_rate_limiter:
            self.rate_limiter.destroy()
        if self._owns_transport and isinstance(self.transport, HttpClient):
            self.transport.close()
        self.tokens.close()

    def __enter__(self) -> "MpesaClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.destroy()
