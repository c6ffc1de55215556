from mpesa_gateway.callbacks.handler import MpesaCallbackHandler
from mpesa_gateway.callbacks.models import (
    AccountBalanceResult,
    B2BResult,
    B2CResult,
    BalanceAccount,
    C2BResult,
    CallbackKind,
    CallbackResult,
    ResultEnvelope,
    ReversalResult,
    StkPushResult,
    TransactionStatusResult,
    callback_response,
)
from mpesa_gateway.callbacks.parser import detect_callback_kind, get_error_message, parse_callback, parse_result_callback
from mpesa_gateway.callbacks.security import SAFARICOM_IPS, IpAllowList

__all__ = [
    "AccountBalanceResult",
    "B2BResult",
    "B2CResult",
    "BalanceAccount",
    "C2BResult",
    "CallbackKind",
    "CallbackResult",
    "IpAllowList",
    "MpesaCallbackHandler",
    "ResultEnvelope",
    "ReversalResult",
    "SAFARICOM_IPS",
    "StkPushResult",
    "TransactionStatusResult",
    "callback_response",
    "detect_callback_kind",
    "get_error_message",
    "parse_callback",
    "parse_result_callback",
]
