# tests/conftest.py

from __future__ import annotations

import copy
import fnmatch
from typing import Any, Optional

import pytest

from mpesa_gateway.base import TokenGrant, TransportResponse
from mpesa_gateway.config import MpesaConfig


# ---------------------------
# Fakes
# ---------------------------

class FakeClock:
    def __init__(self, start: float = 1_766_400_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """
    Scripted AuthTransport + OperationTransport.

    Each queue entry is either a value to return or an exception to raise;
    when a queue runs dry the last entry repeats.
    """

    def __init__(self, tokens: Optional[list[Any]] = None, responses: Optional[list[Any]] = None):
        self.tokens = list(tokens or [TokenGrant("tok-1", 3600)])
        self.responses = list(responses or [TransportResponse(200, {"ResponseCode": "0"})])
        self.token_calls: list[dict[str, Any]] = []
        self.post_calls: list[dict[str, Any]] = []

    @staticmethod
    def _next(queue: list[Any]) -> Any:
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item()
        return item

    def fetch_token(self, url: str, *, authorization: str, timeout_s: float) -> TokenGrant:
        self.token_calls.append({"url": url, "authorization": authorization, "timeout_s": timeout_s})
        return self._next(self.tokens)

    def post_json(self, url: str, *, token: str, body: dict[str, Any], timeout_s: float) -> TransportResponse:
        self.post_calls.append({"url": url, "token": token, "body": body, "timeout_s": timeout_s})
        return self._next(self.responses)


class FakeRedis:
    """Just enough of redis-py for the shared rate limiter (INCR/EXPIRE/TTL)."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self.values: dict[str, int] = {}
        self.expires_at: dict[str, float] = {}
        self.expire_calls: list[tuple[str, int]] = []

    def _evict(self, name: str) -> None:
        exp = self.expires_at.get(name)
        if exp is not None and self._clock() >= exp:
            self.values.pop(name, None)
            self.expires_at.pop(name, None)

    def incr(self, name: str) -> int:
        self._evict(name)
        self.values[name] = self.values.get(name, 0) + 1
        return self.values[name]

    def expire(self, name: str, time: int) -> bool:
        self.expire_calls.append((name, time))
        if name not in self.values:
            return False
        self.expires_at[name] = self._clock() + time
        return True

    def ttl(self, name: str) -> int:
        self._evict(name)
        if name not in self.values:
            return -2
        exp = self.expires_at.get(name)
        if exp is None:
            return -1
        return int(exp - self._clock() + 0.999)

    def get(self, name: str) -> Optional[str]:
        self._evict(name)
        value = self.values.get(name)
        return str(value) if value is not None else None

    def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            removed += int(self.values.pop(name, None) is not None)
            self.expires_at.pop(name, None)
        return removed

    def scan_iter(self, match: Optional[str] = None, count: Optional[int] = None):
        for name in list(self.values):
            self._evict(name)
            if name in self.values and (match is None or fnmatch.fnmatchcase(name, match)):
                yield name

    def drop_expiry(self, name: str) -> None:
        self.expires_at.pop(name, None)


class RecordingLogger:
    def __init__(self):
        self.lines: list[tuple[str, str]] = []

    def info(self, msg: str, *args: Any) -> None:
        self.lines.append(("info", msg % args if args else msg))

    def warning(self, msg: str, *args: Any) -> None:
        self.lines.append(("warning", msg % args if args else msg))

    def error(self, msg: str, *args: Any) -> None:
        self.lines.append(("error", msg % args if args else msg))

    def of(self, level: str) -> list[str]:
        return [line for lvl, line in self.lines if lvl == level]


# ---------------------------
# Fixtures
# ---------------------------

@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def config() -> MpesaConfig:
    return MpesaConfig(
        consumer_key="ck-123",
        consumer_secret="cs-456",
        shortcode="174379",
        passkey="passkey-abc",
    )


@pytest.fixture()
def fake_redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)


# ---------------------------
# Callback payloads
# ---------------------------

STK_SUCCESS = {
    "Body": {
        "stkCallback": {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "ws_CO_22122025144900123456",
            "ResultCode": 0,
            "ResultDesc": "The service request is processed successfully.",
            "CallbackMetadata": {
                "Item": [
                    {"Name": "Amount", "Value": 1000},
                    {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
                    {"Name": "Balance"},
                    {"Name": "TransactionDate", "Value": 20251222144900},
                    {"Name": "PhoneNumber", "Value": 254712345678},
                ]
            },
        }
    }
}

STK_CANCELLED = {
    "Body": {
        "stkCallback": {
            "MerchantRequestID": "29115-34620561-2",
            "CheckoutRequestID": "ws_CO_22122025145000654321",
            "ResultCode": 1032,
            "ResultDesc": "Request cancelled by user",
        }
    }
}

B2C_SUCCESS = {
    "Result": {
        "ResultType": 0,
        "ResultCode": 0,
        "ResultDesc": "The service request is processed successfully.",
        "OriginatorConversationID": "10571-7910404-1",
        "ConversationID": "AG_20251222_00004e48cf7e3533f581",
        "TransactionID": "NLJ41HAY6Q",
        "ResultParameters": {
            "ResultParameter": [
                {"Key": "TransactionAmount", "Value": 10},
                {"Key": "TransactionReceipt", "Value": "NLJ41HAY6Q"},
                {"Key": "B2CRecipientIsRegisteredCustomer", "Value": "Y"},
                {"Key": "B2CChargesPaidAccountAvailableFunds", "Value": -4510.00},
                {"Key": "ReceiverPartyPublicName", "Value": "254712345678 - John Doe"},
                {"Key": "TransactionCompletedDateTime", "Value": "22.12.2025 14:49:00"},
                {"Key": "B2CUtilityAccountAvailableFunds", "Value": 10116.00},
                {"Key": "B2CWorkingAccountAvailableFunds", "Value": 900000.00},
            ]
        },
        "ReferenceData": {"ReferenceItem": {"Key": "QueueTimeoutURL", "Value": "https://example.com/timeout"}},
    }
}

RESULT_FAILURE = {
    "Result": {
        "ResultType": 0,
        "ResultCode": 2001,
        "ResultDesc": "The initiator information is invalid.",
        "OriginatorConversationID": "29112-34801843-1",
        "ConversationID": "AG_20251222_00006bd489ffcaf79e91",
        "TransactionID": "NLJ0000000",
    }
}

B2B_SUCCESS = {
    "Result": {
        "ResultType": 0,
        "ResultCode": 0,
        "ResultDesc": "The service request is processed successfully.",
        "OriginatorConversationID": "8551-61996-3",
        "ConversationID": "AG_20251222_00005797af5d7d75f652",
        "TransactionID": "NLJ11HAY8V",
        "ResultParameters": {
            "ResultParameter": [
                {"Key": "DebitAccountBalance", "Value": "5000.00"},
                {"Key": "Amount", "Value": 190},
                {"Key": "DebitPartyAffectedAccountBalance", "Value": "Working Account|KES|346568.83|346568.83|0.00|0.00"},
                {"Key": "TransCompletedTime", "Value": 20251222144900},
                {"Key": "DebitPartyCharges", "Value": ""},
                {"Key": "ReceiverPartyPublicName", "Value": "000000 - Otto Company"},
                {"Key": "Currency", "Value": "KES"},
            ]
        },
    }
}

BALANCE_SUCCESS = {
    "Result": {
        "ResultType": 0,
        "ResultCode": 0,
        "ResultDesc": "The service request has been accepted successfully.",
        "OriginatorConversationID": "10816-694520-2",
        "ConversationID": "AG_20251222_000059c52529a8e080bd",
        "TransactionID": "LGR0000000",
        "ResultParameters": {
            "ResultParameter": [
                {
                    "Key": "AccountBalance",
                    "Value": "Working Account|KES|46713.00|46713.00|0.00|0.00&Utility Account|KES|1000.00|1000.00|0.00|0.00",
                },
                {"Key": "BOCompletedTime", "Value": 20251222144900},
            ]
        },
    }
}

STATUS_SUCCESS = {
    "Result": {
        "ResultType": 0,
        "ResultCode": 0,
        "ResultDesc": "The service request is processed successfully.",
        "OriginatorConversationID": "10816-694520-3",
        "ConversationID": "AG_20251222_000012ab34cd56ef7890",
        "TransactionID": "LGR1111111",
        "ResultParameters": {
            "ResultParameter": [
                {"Key": "ReceiptNo", "Value": "NLJ7RT61SV"},
                {"Key": "Amount", "Value": 100},
                {"Key": "FinalisedTime", "Value": 20251222144900},
                {"Key": "InitiatedTime", "Value": 20251222144800},
                {"Key": "TransactionStatus", "Value": "Completed"},
                {"Key": "ReasonType", "Value": "Salary Payment via API"},
                {"Key": "DebitPartyName", "Value": "600000 - Safaricom"},
                {"Key": "CreditPartyName", "Value": "254712345678 - John Doe"},
            ]
        },
    }
}

REVERSAL_SUCCESS = {
    "Result": {
        "ResultType": 0,
        "ResultCode": 0,
        "ResultDesc": "The service request is processed successfully.",
        "OriginatorConversationID": "10819-695089-1",
        "ConversationID": "AG_20251222_00004efadacbd97b4c5e",
        "TransactionID": "NLJ51HBY7R",
        "ResultParameters": {
            "ResultParameter": [
                {"Key": "OriginalTransactionID", "Value": "NLJ41HAY6Q"},
                {"Key": "Amount", "Value": 100},
                {"Key": "CreditPartyPublicName", "Value": "254712345678 - John Doe"},
                {"Key": "DebitPartyPublicName", "Value": "600610 - Safaricom"},
                {"Key": "TransCompletedTime", "Value": 20251222144900},
                {"Key": "Charge", "Value": 0},
            ]
        },
    }
}

C2B_CONFIRMATION = {
    "TransactionType": "Pay Bill",
    "TransID": "RKTQDM7W6S",
    "TransTime": "20251222144900",
    "TransAmount": "1000",
    "BusinessShortCode": "600638",
    "BillRefNumber": "invoice008",
    "InvoiceNumber": "",
    "OrgAccountBalance": "",
    "ThirdPartyTransID": "",
    "MSISDN": "254712345678",
    "FirstName": "John",
    "MiddleName": "",
    "LastName": "Doe",
}


@pytest.fixture()
def payloads() -> dict[str, dict[str, Any]]:
    return copy.deepcopy(
        {
            "stk_success": STK_SUCCESS,
            "stk_cancelled": STK_CANCELLED,
            "b2c_success": B2C_SUCCESS,
            "result_failure": RESULT_FAILURE,
            "b2b_success": B2B_SUCCESS,
            "balance_success": BALANCE_SUCCESS,
            "status_success": STATUS_SUCCESS,
            "reversal_success": REVERSAL_SUCCESS,
            "c2b_confirmation": C2B_CONFIRMATION,
        }
    )
