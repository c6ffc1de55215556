from __future__ import annotations

import pytest

from mpesa_gateway.base import TokenGrant, TransportResponse
from mpesa_gateway.client import MpesaClient
from mpesa_gateway.config import MpesaConfig
from mpesa_gateway.errors import ErrorKind, MpesaError
from mpesa_gateway.rate_limit import InMemoryRateLimiter
from mpesa_gateway.retry import RetryOptions
from mpesa_gateway.settings import Settings
from tests.conftest import FakeTransport

STK_PATH = "/mpesa/stkpush/v1/processrequest"


def _client(config, clock, sleeps, transport, **kwargs) -> MpesaClient:
    return MpesaClient(config, transport=transport, clock=clock, sleep=sleeps.append, rand=lambda: 0.5, **kwargs)


def test_request_posts_with_bearer_token(config, clock, sleeps):
    transport = FakeTransport(responses=[TransportResponse(200, {"ResponseCode": "0", "CheckoutRequestID": "ws_CO_1"})])
    client = _client(config, clock, sleeps, transport)

    body = client.request(STK_PATH, {"Amount": 1})

    assert body["CheckoutRequestID"] == "ws_CO_1"
    call = transport.post_calls[0]
    assert call["url"] == "https://sandbox.safaricom.co.ke/mpesa/stkpush/v1/processrequest"
    assert call["token"] == "tok-1"
    assert call["body"] == {"Amount": 1}
    assert len(transport.token_calls) == 1


def test_token_is_reused_across_requests(config, clock, sleeps):
    transport = FakeTransport()
    client = _client(config, clock, sleeps, transport)

    client.request(STK_PATH, {})
    client.request(STK_PATH, {})
    assert client.get_access_token() == "tok-1"
    assert len(transport.token_calls) == 1


def test_server_error_is_retried(config, clock, sleeps):
    transport = FakeTransport(
        responses=[
            TransportResponse(503, {"errorMessage": "Service Unavailable"}),
            TransportResponse(200, {"ResponseCode": "0"}),
        ]
    )
    client = _client(config, clock, sleeps, transport)

    assert client.request(STK_PATH, {}) == {"ResponseCode": "0"}
    assert len(transport.post_calls) == 2
    assert sleeps == [1.0]


def test_validation_error_is_not_retried(config, clock, sleeps):
    transport = FakeTransport(responses=[TransportResponse(400, {"errorMessage": "Invalid PhoneNumber"})])
    client = _client(config, clock, sleeps, transport)

    with pytest.raises(MpesaError) as exc:
        client.request(STK_PATH, {})

    assert exc.value.kind == ErrorKind.VALIDATION
    assert len(transport.post_calls) == 1
    assert sleeps == []


def test_rejected_token_is_invalidated(config, clock, sleeps):
    transport = FakeTransport(
        tokens=[TokenGrant("tok-1", 3600), TokenGrant("tok-2", 3600)],
        responses=[
            TransportResponse(401, {"errorMessage": "Invalid Access Token"}),
            TransportResponse(200, {"ResponseCode": "0"}),
        ],
    )
    client = _client(config, clock, sleeps, transport)

    with pytest.raises(MpesaError) as exc:
        client.request(STK_PATH, {})
    assert exc.value.kind == ErrorKind.AUTH
    assert client.tokens.cached is None

    client.request(STK_PATH, {})
    assert transport.post_calls[-1]["token"] == "tok-2"


def test_rate_limit_blocks_before_network(config, clock, sleeps):
    limiter = InMemoryRateLimiter(1, 60, clock=clock, cleanup_interval_s=None)
    transport = FakeTransport()
    client = _client(config, clock, sleeps, transport, rate_limiter=limiter)

    client.request(STK_PATH, {}, rate_limit_key="stk:254712345678")
    with pytest.raises(MpesaError) as exc:
        client.request(STK_PATH, {}, rate_limit_key="stk:254712345678")

    assert exc.value.kind == ErrorKind.RATE_LIMIT
    assert len(transport.post_calls) == 1


def test_rate_limiter_built_from_config(clock, sleeps):
    config = MpesaConfig(consumer_key="k", consumer_secret="s", rate_limit_enabled=True, rate_limit_max_requests=1)
    with _client(config, clock, sleeps, FakeTransport()) as client:
        assert isinstance(client.rate_limiter, InMemoryRateLimiter)
        client.check_rate_limit("k")
        with pytest.raises(MpesaError):
            client.check_rate_limit("k")
    assert client.rate_limiter.sweeping is False


def test_no_rate_limiter_by_default(config, clock, sleeps):
    client = _client(config, clock, sleeps, FakeTransport())
    assert client.rate_limiter is None
    client.check_rate_limit("anything")


def test_execute_wraps_arbitrary_operations(config, clock, sleeps):
    client = _client(config, clock, sleeps, FakeTransport())
    calls = []

    def op():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionRefusedError()
        return "done"

    assert client.execute(op) == "done"
    assert len(calls) == 3

    def refuse():
        raise ConnectionRefusedError()

    with pytest.raises(ConnectionRefusedError):
        client.execute(refuse, RetryOptions(max_retries=0))


def test_callbacks_flow_through_client(config, clock, sleeps, payloads):
    received = []
    client = _client(config, clock, sleeps, FakeTransport(), on_success=received.append)

    assert client.handle_callback(payloads["stk_success"]) == {"ResultCode": 0, "ResultDesc": "Accepted"}
    assert received[0].mpesa_receipt_number == "NLJ7RT61SV"
    assert client.parse_callback(payloads["c2b_confirmation"]).transaction_id == "RKTQDM7W6S"
    assert client.handle_c2b_validation(payloads["c2b_confirmation"]) is True


def test_callback_ip_validation_from_config(clock, sleeps, payloads):
    config = MpesaConfig(
        consumer_key="k",
        consumer_secret="s",
        callback_validate_ip=True,
        callback_allowed_ips=("203.0.113.7",),
    )
    client = _client(config, clock, sleeps, FakeTransport())

    assert client.handle_callback(payloads["stk_success"], source_ip="203.0.113.7")["ResultCode"] == 0
    with pytest.raises(MpesaError):
        client.handle_callback(payloads["stk_success"], source_ip="196.201.214.200")


def test_from_settings():
    source = Settings(
        _env_file=None,
        MPESA_ENV="production",
        MPESA_CONSUMER_KEY=" key ",
        MPESA_CONSUMER_SECRET="secret",
    )
    client = MpesaClient.from_settings(source, transport=FakeTransport())

    assert client.config.consumer_key == "key"
    assert client.config.api_base_url == "https://api.safaricom.co.ke"
    client.destroy()


def test_token_outage_is_retried_once_per_attempt(config, clock, sleeps):
    transport = FakeTransport(tokens=[ConnectionRefusedError("refused")])
    client = _client(config, clock, sleeps, transport)

    with pytest.raises(MpesaError) as exc:
        client.request(STK_PATH, {})

    assert exc.value.kind == ErrorKind.NETWORK
    assert len(transport.token_calls) == config.retry_max + 1
    assert len(sleeps) == config.retry_max
    assert transport.post_calls == []


def test_get_access_token_retries_through_client_policy(config, clock, sleeps):
    transport = FakeTransport(tokens=[ConnectionRefusedError("refused"), TokenGrant("tok-9", 3600)])
    client = _client(config, clock, sleeps, transport)

    assert client.get_access_token() == "tok-9"
    assert len(transport.token_calls) == 2
    assert sleeps == [1.0]
