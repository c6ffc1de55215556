from mpesa_gateway.auth import TokenCache, generate_timestamp, stk_password
from mpesa_gateway.callbacks import (
    CallbackKind,
    CallbackResult,
    MpesaCallbackHandler,
    SAFARICOM_IPS,
    get_error_message,
    parse_callback,
)
from mpesa_gateway.client import MpesaClient
from mpesa_gateway.config import MpesaConfig, mpesa_config, validate_mpesa_settings
from mpesa_gateway.errors import ErrorKind, MpesaError
from mpesa_gateway.http import HttpClient
from mpesa_gateway.rate_limit import InMemoryRateLimiter, RateLimitUsage, RedisRateLimiter
from mpesa_gateway.retry import RetryExecutor, RetryOptions, retry_with_backoff

__version__ = "0.1.0"

__all__ = [
    "CallbackKind",
    "CallbackResult",
    "ErrorKind",
    "HttpClient",
    "InMemoryRateLimiter",
    "MpesaCallbackHandler",
    "MpesaClient",
    "MpesaConfig",
    "MpesaError",
    "RateLimitUsage",
    "RedisRateLimiter",
    "RetryExecutor",
    "RetryOptions",
    "SAFARICOM_IPS",
    "TokenCache",
    "generate_timestamp",
    "get_error_message",
    "mpesa_config",
    "parse_callback",
    "retry_with_backoff",
    "stk_password",
    "validate_mpesa_settings",
]
