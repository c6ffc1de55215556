"""Normalise the gateway's asynchronous callback payloads.

Every parser here is total: malformed input degrades to a failed result
(is_success=False, result_code=-1) instead of raising, because the gateway
must always receive an acknowledgement.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

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
)

MISSING_RESULT_CODE = -1

ERROR_MESSAGES = {
    0: "Success",
    1: "Insufficient funds in M-Pesa account",
    17: "Transaction cancelled: M-Pesa risk or limit rule triggered",
    26: "System busy, please try again",
    1001: "Subscriber busy, another transaction is in progress",
    1019: "Transaction expired before completion",
    1025: "Error sending push request to the subscriber",
    1032: "Transaction cancelled by user",
    1037: "User cannot be reached (request timed out)",
    2001: "Wrong PIN entered",
    9999: "Error sending push request to the subscriber",
}


def get_error_message(code: Any) -> str:
    parsed = _int(code)
    if parsed is not None and parsed in ERROR_MESSAGES:
        return ERROR_MESSAGES[parsed]
    return f"Transaction failed (code {code})"


# ---------------------------
# Value helpers
# ---------------------------

def _int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def _str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _bool(value: Any) -> Optional[bool]:
    text = (_str(value) or "").upper()
    if text in ("Y", "YES", "TRUE", "1"):
        return True
    if text in ("N", "NO", "FALSE", "0"):
        return False
    return None


def _iso_timestamp(value: Any) -> Optional[str]:
    # 20251222144900 -> 2025-12-22T14:49:00
    text = _str(value)
    if text is None:
        return None
    if len(text) == 14 and text.isdigit():
        return f"{text[0:4]}-{text[4:6]}-{text[6:8]}T{text[8:10]}:{text[10:12]}:{text[12:14]}"
    return text


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _items(container: Any, list_key: str, name_key: str) -> dict[str, Any]:
    """
    Flatten {list_key: [{name_key: k, "Value": v}, ...]} into {k: v}.
    A single item may arrive as a bare dict instead of a list.
    """
    raw = _dict(container).get(list_key)
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        return {}
    out: dict[str, Any] = {}
    for item in raw:
        if isinstance(item, dict) and item.get(name_key) is not None:
            out[str(item[name_key])] = item.get("Value")
    return out


def _outcome(result_code: Any, result_desc: Any) -> dict[str, Any]:
    code = _int(result_code)
    desc = _str(result_desc)
    if code is None:
        return {
            "is_success": False,
            "result_code": MISSING_RESULT_CODE,
            "result_desc": desc,
            "error_message": desc or get_error_message(MISSING_RESULT_CODE),
        }
    success = code == 0
    return {
        "is_success": success,
        "result_code": code,
        "result_desc": desc,
        "error_message": None if success else (desc or get_error_message(code)),
    }


# ---------------------------
# STK push
# ---------------------------

def parse_stk_callback(payload: Any) -> StkPushResult:
    cb = _dict(_dict(_dict(payload).get("Body")).get("stkCallback"))
    outcome = _outcome(cb.get("ResultCode"), cb.get("ResultDesc"))
    fields: dict[str, Any] = {}

    if outcome["is_success"]:
        items = _items(cb.get("CallbackMetadata"), "Item", "Name")
        fields = {
            "amount": _number(items.get("Amount")),
            "mpesa_receipt_number": _str(items.get("MpesaReceiptNumber")),
            "transaction_date": _iso_timestamp(items.get("TransactionDate")),
            "phone_number": _str(items.get("PhoneNumber")),
            "balance": _number(items.get("Balance")),
        }

    return StkPushResult(
        **outcome,
        transaction_id=fields.get("mpesa_receipt_number"),
        merchant_request_id=_str(cb.get("MerchantRequestID")),
        checkout_request_id=_str(cb.get("CheckoutRequestID")),
        **fields,
    )


# ---------------------------
# C2B confirmation / validation
# ---------------------------

def parse_c2b_callback(payload: Any) -> C2BResult:
    p = _dict(payload)
    trans_id = _str(p.get("TransID"))
    amount = _number(p.get("TransAmount"))

    if trans_id is None or amount is None:
        return C2BResult(
            is_success=False,
            result_code=MISSING_RESULT_CODE,
            error_message="Malformed C2B payload: missing TransID or TransAmount",
            transaction_id=trans_id,
        )

    return C2BResult(
        is_success=True,
        result_code=0,
        transaction_id=trans_id,
        transaction_type=_str(p.get("TransactionType")),
        transaction_time=_str(p.get("TransTime")),
        amount=amount,
        business_short_code=_str(p.get("BusinessShortCode")),
        bill_ref_number=_str(p.get("BillRefNumber")),
        invoice_number=_str(p.get("InvoiceNumber")),
        org_account_balance=_number(p.get("OrgAccountBalance")),
        third_party_trans_id=_str(p.get("ThirdPartyTransID")),
        msisdn=_str(p.get("MSISDN")),
        first_name=_str(p.get("FirstName")),
        middle_name=_str(p.get("MiddleName")),
        last_name=_str(p.get("LastName")),
    )


# ---------------------------
# Result-style callbacks (B2C, B2B, balance, status, reversal)
# ---------------------------

def _result_envelope(payload: Any) -> tuple[dict[str, Any], dict[str, Any], dict[str, Any]]:
    result = _dict(_dict(payload).get("Result"))
    outcome = _outcome(result.get("ResultCode"), result.get("ResultDesc"))
    common = {
        **outcome,
        "transaction_id": _str(result.get("TransactionID")),
        "result_type": _int(result.get("ResultType")),
        "conversation_id": _str(result.get("ConversationID")),
        "originator_conversation_id": _str(result.get("OriginatorConversationID")),
    }
    params = _items(result.get("ResultParameters"), "ResultParameter", "Key") if outcome["is_success"] else {}
    return result, common, params


def parse_b2c_callback(payload: Any) -> B2CResult:
    _, common, params = _result_envelope(payload)
    receipt = _str(params.get("TransactionReceipt"))
    if receipt:
        common["transaction_id"] = receipt

    return B2CResult(
        **common,
        amount=_number(params.get("TransactionAmount")),
        transaction_receipt=receipt,
        receiver_party_public_name=_str(params.get("ReceiverPartyPublicName")),
        charges=_number(params.get("B2CChargesPaidAccountAvailableFunds")),
        transaction_completed_time=_str(params.get("TransactionCompletedDateTime")),
        utility_account_balance=_number(params.get("B2CUtilityAccountAvailableFunds")),
        working_account_balance=_number(params.get("B2CWorkingAccountAvailableFunds")),
        recipient_is_registered=_bool(params.get("B2CRecipientIsRegisteredCustomer")),
    )


def parse_b2b_callback(payload: Any) -> B2BResult:
    _, common, params = _result_envelope(payload)
    return B2BResult(
        **common,
        amount=_number(params.get("Amount")),
        debit_account_balance=_str(params.get("DebitAccountBalance")),
        trans_completed_time=_str(params.get("TransCompletedTime")),
        receiver_party_public_name=_str(params.get("ReceiverPartyPublicName")),
        currency=_str(params.get("Currency")),
        debit_party_charges=_str(params.get("DebitPartyCharges")),
        initiator_account_current_balance=_str(params.get("InitiatorAccountCurrentBalance")),
    )


def _balance_accounts(raw: Any) -> tuple[BalanceAccount, ...]:
    # "Working Account|KES|46713.00|46713.00|0.00|0.00&Float Account|KES|0.00|..."
    text = _str(raw)
    if not text:
        return ()
    accounts = []
    for chunk in text.split("&"):
        parts = tuple(p.strip() for p in chunk.split("|"))
        if not parts or not parts[0]:
            continue
        accounts.append(
            BalanceAccount(
                name=parts[0],
                currency=parts[1] if len(parts) > 1 and parts[1] else None,
                amount=_number(parts[2]) if len(parts) > 2 else None,
                raw=parts,
            )
        )
    return tuple(accounts)


def parse_account_balance_callback(payload: Any) -> AccountBalanceResult:
    _, common, params = _result_envelope(payload)
    accounts = _balance_accounts(params.get("AccountBalance"))

    working = _number(params.get("WorkingAccountAvailableFunds"))
    if working is None:
        working = next((a.amount for a in accounts if a.name.lower().startswith("working")), None)

    return AccountBalanceResult(
        **common,
        working_balance=working,
        available_balance=_number(params.get("AvailableBalance")),
        booked_balance=_number(params.get("BookedBalance")),
        accounts=accounts,
        completed_time=_str(params.get("BOCompletedTime")),
    )


def parse_transaction_status_callback(payload: Any) -> TransactionStatusResult:
    _, common, params = _result_envelope(payload)
    return TransactionStatusResult(
        **common,
        receipt_no=_str(params.get("ReceiptNo")),
        amount=_number(params.get("Amount")),
        completed_time=_str(params.get("FinalisedTime")),
        initiated_time=_str(params.get("InitiatedTime")),
        debit_party_name=_str(params.get("DebitPartyName")),
        credit_party_name=_str(params.get("CreditPartyName")),
        transaction_status=_str(params.get("TransactionStatus")),
        reason_type=_str(params.get("ReasonType")),
        charge=_number(params.get("Charge")),
    )


def parse_reversal_callback(payload: Any) -> ReversalResult:
    _, common, params = _result_envelope(payload)
    return ReversalResult(
        **common,
        amount=_number(params.get("Amount")),
        original_transaction_id=_str(params.get("OriginalTransactionID")),
        credit_party_public_name=_str(params.get("CreditPartyPublicName")),
        debit_party_public_name=_str(params.get("DebitPartyPublicName")),
        charge=_number(params.get("Charge")),
        trans_completed_time=_str(params.get("TransCompletedTime")),
    )


def parse_result_callback(payload: Any) -> ResultEnvelope:
    _, common, _ = _result_envelope(payload)
    return ResultEnvelope(**common)


# ---------------------------
# Shape dispatch
# ---------------------------

_B2C_KEYS = {
    "TransactionReceipt",
    "TransactionAmount",
    "B2CChargesPaidAccountAvailableFunds",
    "B2CUtilityAccountAvailableFunds",
    "B2CWorkingAccountAvailableFunds",
    "B2CRecipientIsRegisteredCustomer",
}
_B2B_KEYS = {"DebitAccountBalance", "Currency", "DebitPartyCharges", "InitiatorAccountCurrentBalance"}
_BALANCE_KEYS = {"AccountBalance", "WorkingAccountAvailableFunds", "AvailableBalance", "BookedBalance", "BOCompletedTime"}
_STATUS_KEYS = {"ReceiptNo", "FinalisedTime", "InitiatedTime", "TransactionStatus", "ReasonType"}
_REVERSAL_KEYS = {"OriginalTransactionID", "CreditPartyPublicName", "DebitPartyPublicName"}

# Checked in order; the first overlapping key set wins
_RESULT_SIGNATURES = (
    (CallbackKind.B2C, _B2C_KEYS),
    (CallbackKind.ACCOUNT_BALANCE, _BALANCE_KEYS),
    (CallbackKind.TRANSACTION_STATUS, _STATUS_KEYS),
    (CallbackKind.REVERSAL, _REVERSAL_KEYS),
    (CallbackKind.B2B, _B2B_KEYS),
)

PARSERS: dict[CallbackKind, Callable[[Any], CallbackResult]] = {
    CallbackKind.STK_PUSH: parse_stk_callback,
    CallbackKind.C2B: parse_c2b_callback,
    CallbackKind.B2C: parse_b2c_callback,
    CallbackKind.B2B: parse_b2b_callback,
    CallbackKind.ACCOUNT_BALANCE: parse_account_balance_callback,
    CallbackKind.TRANSACTION_STATUS: parse_transaction_status_callback,
    CallbackKind.REVERSAL: parse_reversal_callback,
    CallbackKind.RESULT: parse_result_callback,
}


def detect_callback_kind(payload: Any) -> CallbackKind:
    p = _dict(payload)
    if isinstance(_dict(p.get("Body")).get("stkCallback"), dict):
        return CallbackKind.STK_PUSH
    if "TransID" in p and "TransAmount" in p:
        return CallbackKind.C2B

    result = p.get("Result")
    if not isinstance(result, dict):
        return CallbackKind.UNKNOWN

    keys = set(_items(result.get("ResultParameters"), "ResultParameter", "Key"))
    for kind, signature in _RESULT_SIGNATURES:
        if keys & signature:
            return kind
    # No distinguishing parameters (e.g. failures): common fields only
    return CallbackKind.RESULT


def parse_callback(payload: Any, kind: Optional[CallbackKind] = None) -> CallbackResult:
    resolved = kind or detect_callback_kind(payload)
    parser = PARSERS.get(resolved)
    if parser is None:
        return CallbackResult(
            is_success=False,
            result_code=MISSING_RESULT_CODE,
            error_message="Unrecognised callback payload",
        )
    return parser(payload)
