from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    AUTH = "AUTH"
    VALIDATION = "VALIDATION"
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    API = "API"


_DEFAULT_STATUS = {
    ErrorKind.AUTH: 401,
    ErrorKind.VALIDATION: 400,
    ErrorKind.NETWORK: 503,
    ErrorKind.TIMEOUT: 408,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.API: 500,
}

_DEFAULT_CODE = {
    ErrorKind.AUTH: "AUTH_ERROR",
    ErrorKind.VALIDATION: "VALIDATION_ERROR",
    ErrorKind.NETWORK: "NETWORK_ERROR",
    ErrorKind.TIMEOUT: "TIMEOUT_ERROR",
    ErrorKind.RATE_LIMIT: "RATE_LIMIT_ERROR",
    ErrorKind.API: "UNKNOWN_ERROR",
}

# Only these kinds retry unless a caller overrides the flag.
_RETRYABLE_KINDS = {ErrorKind.NETWORK, ErrorKind.RATE_LIMIT}


class MpesaError(Exception):
    """
    Every failure raised by the SDK.

    The kind tag replaces a class-per-error hierarchy:
      - retryable is derived from kind (NETWORK / RATE_LIMIT) unless overridden
      - retry_after is only meaningful for RATE_LIMIT
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
        retry_after: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = int(status_code) if status_code is not None else _DEFAULT_STATUS[kind]
        self.retryable = bool(retryable) if retryable is not None else kind in _RETRYABLE_KINDS
        self.retry_after = retry_after
        self.code = code or _DEFAULT_CODE[kind]
        self.details = details

    def __repr__(self) -> str:
        return (
            f"MpesaError(kind={self.kind.value}, status_code={self.status_code}, "
            f"retryable={self.retryable}, message={self.message!r})"
        )


def auth_error(message: str, details: Any = None, *, status_code: int = 401) -> MpesaError:
    return MpesaError(ErrorKind.AUTH, message, status_code=status_code, details=details)


def validation_error(message: str, details: Any = None) -> MpesaError:
    return MpesaError(ErrorKind.VALIDATION, message, details=details)


def network_error(
    message: str, retryable: bool = True, details: Any = None, *, status_code: int = 503
) -> MpesaError:
    return MpesaError(ErrorKind.NETWORK, message, status_code=status_code, retryable=retryable, details=details)


def timeout_error(message: str, details: Any = None) -> MpesaError:
    return MpesaError(ErrorKind.TIMEOUT, message, details=details)


def rate_limit_error(message: str, retry_after: Optional[int] = None, details: Any = None) -> MpesaError:
    return MpesaError(ErrorKind.RATE_LIMIT, message, retry_after=retry_after, details=details)


def api_error(message: str, code: str, status_code: int, details: Any = None) -> MpesaError:
    return MpesaError(ErrorKind.API, message, status_code=status_code, code=code, details=details)


def _retry_after_from(body: Any) -> Optional[int]:
    raw = body.get("retryAfter") if isinstance(body, dict) else None
    if raw is None:
        return None
    try:
        return max(0, int(float(raw)))
    except (TypeError, ValueError):
        return None


def parse_api_error(status_code: int, body: Any) -> MpesaError:
    payload = body if isinstance(body, dict) else {}
    message = (
        payload.get("errorMessage")
        or payload.get("ResponseDescription")
        or payload.get("message")
        or "Unknown API error"
    )
    code = str(payload.get("errorCode") or payload.get("ResponseCode") or "UNKNOWN_ERROR")

    if status_code in (401, 403):
        return auth_error(message, body, status_code=status_code)
    if status_code == 400:
        return validation_error(message, body)
    if status_code == 429:
        return rate_limit_error(message, _retry_after_from(body), body)
    if status_code >= 500:
        return network_error(message, True, body, status_code=status_code)
    return api_error(message, code, status_code, body)
