"""Retry-with-backoff for gateway calls.

Exponential backoff with +/-20% jitter; rate-limit errors that carry a
retry-after hint wait exactly that long. The original exception is always
re-raised untouched once retries are exhausted or the error is permanent.
"""

from __future__ import annotations

import errno
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

import httpx

from mpesa_gateway.errors import ErrorKind, MpesaError

logger = logging.getLogger("mpesa_gateway.retry")

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
JITTER_RATIO = 0.2

_TRANSPORT_ERRNOS = {errno.ECONNREFUSED, errno.ETIMEDOUT}
_TRANSPORT_CODES = {"ECONNREFUSED", "ETIMEDOUT"}


@dataclass(frozen=True)
class RetryOptions:
    max_retries: int = 3
    initial_delay_s: float = 1.0
    max_delay_s: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_status_codes: frozenset[int] = field(default=DEFAULT_RETRYABLE_STATUS_CODES)
    on_retry: Optional[Callable[[BaseException, int], None]] = None


def is_transport_failure(exc: BaseException) -> bool:
    if isinstance(exc, (ConnectionRefusedError, TimeoutError, httpx.TransportError)):
        return True
    if isinstance(exc, OSError) and exc.errno in _TRANSPORT_ERRNOS:
        return True
    return str(getattr(exc, "code", "") or "").upper() in _TRANSPORT_CODES


def is_retryable_error(exc: BaseException, retryable_status_codes: frozenset[int] = DEFAULT_RETRYABLE_STATUS_CODES) -> bool:
    if isinstance(exc, MpesaError):
        if exc.kind == ErrorKind.NETWORK:
            return exc.retryable
        if exc.kind == ErrorKind.RATE_LIMIT:
            return True
        return exc.status_code in retryable_status_codes

    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status in retryable_status_codes

    return is_transport_failure(exc)


def compute_delay(
    attempt: int,
    options: RetryOptions,
    error: Optional[BaseException] = None,
    *,
    rand: Callable[[], float] = random.random,
) -> float:
    if isinstance(error, MpesaError) and error.kind == ErrorKind.RATE_LIMIT and error.retry_after:
        return float(error.retry_after)

    delay = min(options.initial_delay_s * (options.backoff_multiplier ** attempt), options.max_delay_s)
    jitter = delay * JITTER_RATIO * (rand() - 0.5) * 2
    return max(0.0, delay + jitter)


class RetryExecutor:
    def __init__(
        self,
        options: Optional[RetryOptions] = None,
        *,
        sleep: Callable[[float], Any] = time.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.options = options or RetryOptions()
        self._sleep = sleep
        self._rand = rand

    def execute(self, operation: Callable[[], T], options: Optional[RetryOptions] = None) -> T:
        opts = options or self.options

        for attempt in range(opts.max_retries + 1):
            try:
                return operation()
            except Exception as exc:
                if not is_retryable_error(exc, opts.retryable_status_codes) or attempt == opts.max_retries:
                    raise

                delay = compute_delay(attempt, opts, exc, rand=self._rand)
                logger.warning(
                    "retrying after error attempt=%s/%s delay_s=%.2f err=%s",
                    attempt + 1,
                    opts.max_retries,
                    delay,
                    exc,
                )
                if opts.on_retry is not None:
                    opts.on_retry(exc, attempt + 1)
                self._sleep(delay)

        # max_retries < 0
        raise ValueError("max_retries must be >= 0")


def retry_with_backoff(
    operation: Callable[[], T],
    options: Optional[RetryOptions] = None,
    *,
    sleep: Callable[[float], Any] = time.sleep,
) -> T:
    return RetryExecutor(options, sleep=sleep).execute(operation)
