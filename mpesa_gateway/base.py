from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

Clock = Callable[[], float]


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    # seconds, as declared by the gateway; None => not declared
    expires_in: Optional[int] = None


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    json: Any
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class AuthTransport(Protocol):
    def fetch_token(self, url: str, *, authorization: str, timeout_s: float) -> TokenGrant: ...


class OperationTransport(Protocol):
    def post_json(self, url: str, *, token: str, body: dict[str, Any], timeout_s: float) -> TransportResponse: ...


class CallbackLogger(Protocol):
    def info(self, msg: str, *args: Any) -> None: ...
    def warning(self, msg: str, *args: Any) -> None: ...
    def error(self, msg: str, *args: Any) -> None: ...


DuplicatePredicate = Callable[[str], bool]
ValidationPredicate = Callable[[Any], bool]
Observer = Callable[[Any], None]
