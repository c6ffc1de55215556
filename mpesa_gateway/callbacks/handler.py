from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from mpesa_gateway.base import CallbackLogger, DuplicatePredicate, Observer, ValidationPredicate
from mpesa_gateway.callbacks.models import CallbackKind, CallbackResult, callback_response
from mpesa_gateway.callbacks.parser import get_error_message, parse_callback
from mpesa_gateway.callbacks.security import SAFARICOM_IPS, IpAllowList, client_ip
from mpesa_gateway.errors import auth_error
from mpesa_gateway.redaction import redact_dict, redact_text

INTERNAL_ERROR_DESC = "Internal error processing callback"


class MpesaCallbackHandler:
    """
    Inbound webhook pipeline: IP check -> parse -> duplicate check -> dispatch.

    Only the IP check raises (MpesaError, AUTH/403) so the adapter can answer
    with a non-200; every other path returns the fixed acknowledgement.
    """

    def __init__(
        self,
        *,
        on_success: Optional[Observer] = None,
        on_failure: Optional[Observer] = None,
        on_callback: Optional[Observer] = None,
        is_duplicate: Optional[DuplicatePredicate] = None,
        on_c2b_validation: Optional[ValidationPredicate] = None,
        validate_ip: bool = False,
        allowed_ips: Optional[Iterable[str]] = None,
        logger: Optional[CallbackLogger] = None,
    ) -> None:
        self.on_success = on_success
        self.on_failure = on_failure
        self.on_callback = on_callback
        self.is_duplicate = is_duplicate
        self.on_c2b_validation = on_c2b_validation
        self.validate_ip = validate_ip
        self.allow_list = IpAllowList(allowed_ips or SAFARICOM_IPS)
        self.logger = logger or logging.getLogger("mpesa_gateway.callbacks")

    # ---------------------------
    # Building blocks
    # ---------------------------

    def validate_callback_ip(self, source_ip: Optional[str]) -> bool:
        if not self.validate_ip:
            return True
        return self.allow_list.allows(source_ip)

    @staticmethod
    def get_error_message(code: Any) -> str:
        return get_error_message(code)

    @staticmethod
    def create_callback_response(success: bool, message: Optional[str] = None) -> dict[str, Any]:
        return callback_response(success, message)

    def parse_callback(self, payload: Any, kind: Optional[CallbackKind] = None) -> CallbackResult:
        return parse_callback(payload, kind)

    def _check_ip(self, source_ip: Optional[str]) -> None:
        if not self.validate_callback_ip(source_ip):
            self.logger.warning("rejected callback from ip=%s", client_ip(source_ip))
            raise auth_error(
                f"Invalid callback IP: {client_ip(source_ip)}",
                {"source_ip": source_ip},
                status_code=403,
            )

    def _notify(self, observer: Optional[Observer], name: str, result: CallbackResult) -> None:
        if observer is None:
            return
        try:
            observer(result)
        except Exception as exc:
            self.logger.error(
                "callback observer failed observer=%s kind=%s key=%s err=%s",
                name,
                result.kind.value,
                result.idempotency_key,
                exc,
            )

    def _dispatch(self, result: CallbackResult) -> None:
        self._notify(self.on_callback, "on_callback", result)
        if result.is_success:
            self._notify(self.on_success, "on_success", result)
        else:
            self._notify(self.on_failure, "on_failure", result)

    # ---------------------------
    # Result callbacks
    # ---------------------------

    def handle_callback(
        self,
        payload: Any,
        source_ip: Optional[str] = None,
        kind: Optional[CallbackKind] = None,
    ) -> dict[str, Any]:
        self._check_ip(source_ip)

        result = self.parse_callback(payload, kind)
        self.logger.info(
            "callback received kind=%s success=%s code=%s key=%s",
            result.kind.value,
            result.is_success,
            result.result_code,
            result.idempotency_key,
        )
        if not result.is_success:
            self.logger.info("callback failure kind=%s reason=%s", result.kind.value, redact_text(result.error_message or ""))

        if self.is_duplicate is not None and result.idempotency_key:
            try:
                duplicate = bool(self.is_duplicate(result.idempotency_key))
            except Exception as exc:
                self.logger.error("duplicate check failed key=%s err=%s", result.idempotency_key, exc)
                return callback_response(False, INTERNAL_ERROR_DESC)
            if duplicate:
                self.logger.info("duplicate callback skipped key=%s", result.idempotency_key)
                return callback_response(True)

        self._dispatch(result)
        return callback_response(True)

    def handle_stk_callback(self, payload: Any, source_ip: Optional[str] = None) -> dict[str, Any]:
        return self.handle_callback(payload, source_ip, CallbackKind.STK_PUSH)

    def handle_b2c_callback(self, payload: Any, source_ip: Optional[str] = None) -> dict[str, Any]:
        return self.handle_callback(payload, source_ip, CallbackKind.B2C)

    def handle_b2b_callback(self, payload: Any, source_ip: Optional[str] = None) -> dict[str, Any]:
        return self.handle_callback(payload, source_ip, CallbackKind.B2B)

    def handle_account_balance_callback(self, payload: Any, source_ip: Optional[str] = None) -> dict[str, Any]:
        return self.handle_callback(payload, source_ip, CallbackKind.ACCOUNT_BALANCE)

    def handle_transaction_status_callback(self, payload: Any, source_ip: Optional[str] = None) -> dict[str, Any]:
        return self.handle_callback(payload, source_ip, CallbackKind.TRANSACTION_STATUS)

    def handle_reversal_callback(self, payload: Any, source_ip: Optional[str] = None) -> dict[str, Any]:
        return self.handle_callback(payload, source_ip, CallbackKind.REVERSAL)

    def handle_c2b_confirmation(self, payload: Any, source_ip: Optional[str] = None) -> dict[str, Any]:
        return self.handle_callback(payload, source_ip, CallbackKind.C2B)

    def handle_timeout(self, payload: Any, source_ip: Optional[str] = None) -> dict[str, Any]:
        """Queue-timeout notifications carry no outcome; log and acknowledge."""
        self._check_ip(source_ip)
        body = redact_dict(payload) if isinstance(payload, dict) else None
        self.logger.warning("callback queue timeout payload=%s", body)
        return callback_response(True)

    # ---------------------------
    # C2B validation (accept / reject decision)
    # ---------------------------

    def handle_c2b_validation(self, payload: Any) -> bool:
        if self.on_c2b_validation is None:
            return True
        result = self.parse_callback(payload, CallbackKind.C2B)
        try:
            return bool(self.on_c2b_validation(result))
        except Exception as exc:
            self.logger.error("c2b validation predicate failed key=%s err=%s", result.idempotency_key, exc)
            return False

    def c2b_validation_response(self, payload: Any, source_ip: Optional[str] = None) -> dict[str, Any]:
        self._check_ip(source_ip)
        if self.handle_c2b_validation(payload):
            return callback_response(True)
        return callback_response(False, "Rejected")
