from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from mpesa_gateway.base import TokenGrant, TransportResponse
from mpesa_gateway.errors import auth_error, network_error, parse_api_error, timeout_error
from mpesa_gateway.redaction import redact_dict, redact_text

logger = logging.getLogger("mpesa_gateway.http")


def _safe_json(r: httpx.Response) -> Any:
    try:
        return r.json()
    except Exception:
        return None


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


class HttpClient:
    """httpx-backed AuthTransport + OperationTransport."""

    def __init__(self, timeout_s: float = 30.0, follow_redirects: bool = True, client: Optional[httpx.Client] = None):
        self._client = client or httpx.Client(timeout=timeout_s, follow_redirects=follow_redirects)

    def fetch_token(self, url: str, *, authorization: str, timeout_s: float) -> TokenGrant:
        headers = {"Authorization": authorization}
        r = self._send("GET", url, headers=headers, timeout_s=timeout_s)
        payload = _safe_json(r)

        if not r.is_success:
            raise parse_api_error(r.status_code, payload)

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise auth_error("No access token in response", payload)

        return TokenGrant(access_token=str(token), expires_in=_int_or_none(payload.get("expires_in")))

    def post_json(self, url: str, *, token: str, body: dict[str, Any], timeout_s: float) -> TransportResponse:
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        r = self._send("POST", url, headers=headers, json_body=body, timeout_s=timeout_s)
        return TransportResponse(status_code=r.status_code, json=_safe_json(r), text=r.text)

    def close(self) -> None:
        self._client.close()

    def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        timeout_s: float,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            r = self._client.request(method, url, headers=headers, json=json_body, timeout=timeout_s)
        except httpx.TimeoutException as exc:
            raise timeout_error(f"Request timed out: {method} {url}", {"error": str(exc)}) from exc
        except httpx.TransportError as exc:
            raise network_error(f"Transport failure: {exc}", True, {"error": str(exc)}) from exc

        if logger.isEnabledFor(logging.DEBUG):
            self._debug_dump(method, url, headers, json_body, r)
        return r

    @staticmethod
    def _debug_dump(method: str, url: str, headers: dict[str, str], json_body: Any, r: httpx.Response) -> None:
        # Don't log secrets
        logger.debug("%s %s headers=%s", method, url, redact_dict(headers))
        if json_body is not None:
            logger.debug("json=%s", redact_dict(json_body))
        logger.debug("-> status=%s text=%s", r.status_code, redact_text(r.text[:300]))
