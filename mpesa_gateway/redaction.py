from __future__ import annotations

import re
from typing import Any

# Kenyan MSISDNs: 2547XXXXXXXX / 2541XXXXXXXX, optionally "+"-prefixed
_MSISDN_RE = re.compile(r"\+?\b254[17]\d{8}\b")
_AUTH_HEADER_RE = re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)

REDACTED = "[REDACTED]"

# Daraja field names (lower-cased) whose value is dropped entirely
SECRET_FIELDS = frozenset(
    {
        "authorization",
        "access_token",
        "password",
        "passkey",
        "securitycredential",
        "initiatorpassword",
        "consumer_key",
        "consumer_secret",
    }
)

# Fields carrying a subscriber number, top-level (C2B, STK request) or as an
# Item / ResultParameter name inside callback metadata
MSISDN_FIELDS = frozenset({"phonenumber", "msisdn", "partya", "debitpartyname", "creditpartyname"})

# Subscriber names on C2B confirmations
NAME_FIELDS = frozenset({"firstname", "middlename", "lastname"})


def mask_msisdn(value: Any) -> str:
    """254712345678 -> 254712****78"""
    text = str(value)
    if len(text) <= 8:
        return text
    return f"{text[:6]}****{text[-2:]}"


def redact_text(value: str) -> str:
    masked = _AUTH_HEADER_RE.sub(lambda m: f"{m.group(1)} {REDACTED}", value)
    return _MSISDN_RE.sub(lambda m: mask_msisdn(m.group(0)), masked)


def _mask_name(value: Any) -> Any:
    text = str(value or "").strip()
    return f"{text[0]}." if text else value


def _redact_field(name: str, value: Any) -> Any:
    key = name.lower()
    if key in SECRET_FIELDS or key.endswith("secret") or key.endswith("token"):
        return REDACTED
    if key in MSISDN_FIELDS and isinstance(value, (str, int)) and not isinstance(value, bool):
        return mask_msisdn(value) if str(value).lstrip("+").isdigit() else redact_text(str(value))
    if key in NAME_FIELDS:
        return _mask_name(value)
    return redact_value(value)


def _redact_named_item(item: dict[str, Any]) -> dict[str, Any]:
    # {"Name": "PhoneNumber", "Value": 254712345678} / {"Key": ..., "Value": ...}
    label = item.get("Name", item.get("Key"))
    out = {k: redact_value(v) for k, v in item.items() if k != "Value"}
    if "Value" in item:
        out["Value"] = _redact_field(str(label), item["Value"]) if isinstance(label, str) else redact_value(item["Value"])
    return out


def redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, (list, tuple)):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    if "Value" in payload and ("Name" in payload or "Key" in payload):
        return _redact_named_item(payload)
    return {k: _redact_field(str(k), v) for k, v in payload.items()}
