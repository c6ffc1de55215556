from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class CallbackKind(str, Enum):
    STK_PUSH = "STK_PUSH"
    C2B = "C2B"
    B2C = "B2C"
    B2B = "B2B"
    ACCOUNT_BALANCE = "ACCOUNT_BALANCE"
    TRANSACTION_STATUS = "TRANSACTION_STATUS"
    REVERSAL = "REVERSAL"
    # Result-style payload whose operation can't be told from its parameters
    RESULT = "RESULT"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class CallbackResult:
    is_success: bool
    result_code: int
    result_desc: Optional[str] = None
    error_message: Optional[str] = None
    transaction_id: Optional[str] = None
    kind: CallbackKind = CallbackKind.UNKNOWN

    @property
    def idempotency_key(self) -> Optional[str]:
        return self.transaction_id


@dataclass(frozen=True)
class StkPushResult(CallbackResult):
    kind: CallbackKind = CallbackKind.STK_PUSH
    merchant_request_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    amount: Optional[float] = None
    mpesa_receipt_number: Optional[str] = None
    transaction_date: Optional[str] = None
    phone_number: Optional[str] = None
    balance: Optional[float] = None

    @property
    def idempotency_key(self) -> Optional[str]:
        return self.checkout_request_id or self.mpesa_receipt_number


@dataclass(frozen=True)
class ResultEnvelope(CallbackResult):
    """Fields shared by every Result-style (async API) callback."""

    kind: CallbackKind = CallbackKind.RESULT
    result_type: Optional[int] = None
    conversation_id: Optional[str] = None
    originator_conversation_id: Optional[str] = None

    @property
    def idempotency_key(self) -> Optional[str]:
        return self.transaction_id or self.conversation_id or self.originator_conversation_id


@dataclass(frozen=True)
class B2CResult(ResultEnvelope):
    kind: CallbackKind = CallbackKind.B2C
    amount: Optional[float] = None
    transaction_receipt: Optional[str] = None
    receiver_party_public_name: Optional[str] = None
    charges: Optional[float] = None
    transaction_completed_time: Optional[str] = None
    utility_account_balance: Optional[float] = None
    working_account_balance: Optional[float] = None
    recipient_is_registered: Optional[bool] = None


@dataclass(frozen=True)
class B2BResult(ResultEnvelope):
    kind: CallbackKind = CallbackKind.B2B
    amount: Optional[float] = None
    debit_account_balance: Optional[str] = None
    trans_completed_time: Optional[str] = None
    receiver_party_public_name: Optional[str] = None
    currency: Optional[str] = None
    debit_party_charges: Optional[str] = None
    initiator_account_current_balance: Optional[str] = None


@dataclass(frozen=True)
class BalanceAccount:
    name: str
    currency: Optional[str] = None
    amount: Optional[float] = None
    raw: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AccountBalanceResult(ResultEnvelope):
    kind: CallbackKind = CallbackKind.ACCOUNT_BALANCE
    working_balance: Optional[float] = None
    available_balance: Optional[float] = None
    booked_balance: Optional[float] = None
    accounts: tuple[BalanceAccount, ...] = field(default_factory=tuple)
    completed_time: Optional[str] = None


@dataclass(frozen=True)
class TransactionStatusResult(ResultEnvelope):
    kind: CallbackKind = CallbackKind.TRANSACTION_STATUS
    receipt_no: Optional[str] = None
    amount: Optional[float] = None
    completed_time: Optional[str] = None
    initiated_time: Optional[str] = None
    debit_party_name: Optional[str] = None
    credit_party_name: Optional[str] = None
    transaction_status: Optional[str] = None
    reason_type: Optional[str] = None
    charge: Optional[float] = None


@dataclass(frozen=True)
class ReversalResult(ResultEnvelope):
    kind: CallbackKind = CallbackKind.REVERSAL
    amount: Optional[float] = None
    original_transaction_id: Optional[str] = None
    credit_party_public_name: Optional[str] = None
    debit_party_public_name: Optional[str] = None
    charge: Optional[float] = None
    trans_completed_time: Optional[str] = None


@dataclass(frozen=True)
class C2BResult(CallbackResult):
    kind: CallbackKind = CallbackKind.C2B
    transaction_type: Optional[str] = None
    transaction_time: Optional[str] = None
    amount: Optional[float] = None
    business_short_code: Optional[str] = None
    bill_ref_number: Optional[str] = None
    invoice_number: Optional[str] = None
    org_account_balance: Optional[float] = None
    third_party_trans_id: Optional[str] = None
    msisdn: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None


def callback_response(success: bool, message: Optional[str] = None) -> dict[str, Any]:
    if success:
        return {"ResultCode": 0, "ResultDesc": "Accepted"}
    return {"ResultCode": 1, "ResultDesc": message or "Rejected"}
