import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from walletsync import config
from walletsync.errors import PushError
from walletsync.integrations.apns import SANDBOX_HOST, ApnsClient

DEVICE_TOKEN = "a1b2c3d4e5f60718293a4b5c6d7e8f90"


@pytest.fixture(scope="module")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture()
def p8_pem(ec_key):
    return ec_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()


def _client(p8_pem, handler, **overrides):
    kwargs = dict(
        team_id="TEAM123456",
        key_id="KEY7654321",
        private_key=p8_pem,
        topic="pass.com.example.loyalty",
        use_sandbox=True,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    kwargs.update(overrides)
    return ApnsClient(**kwargs)


def test_push_request_shape(p8_pem, ec_key):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, headers={"apns-id": "abc-123"})

    outcome = _client(p8_pem, handler).send_update_push(DEVICE_TOKEN)
    assert outcome.delivered is True
    assert outcome.apns_id == "abc-123"

    request = seen[0]
    assert str(request.url) == f"{SANDBOX_HOST}/3/device/{DEVICE_TOKEN}"
    assert request.content == b"{}"
    assert request.headers["apns-topic"] == "pass.com.example.loyalty"
    assert request.headers["apns-push-type"] == "background"

    token = request.headers["authorization"].split(" ", 1)[1]
    assert jwt.get_unverified_header(token)["kid"] == "KEY7654321"
    claims = jwt.decode(token, ec_key.public_key(), algorithms=["ES256"])
    assert claims["iss"] == "TEAM123456"


def test_provider_token_is_reused(p8_pem):
    tokens = []

    def handler(request):
        tokens.append(request.headers["authorization"])
        return httpx.Response(200)

    client = _client(p8_pem, handler)
    client.send_update_push(DEVICE_TOKEN)
    client.send_update_push(DEVICE_TOKEN)
    assert tokens[0] == tokens[1]


def test_unregistered_token_is_reported_not_raised(p8_pem):
    handler = lambda request: httpx.Response(410, json={"reason": "Unregistered", "timestamp": 1700000000000})
    outcome = _client(p8_pem, handler).send_update_push(DEVICE_TOKEN)
    assert outcome.delivered is False
    assert outcome.token_unregistered is True
    assert outcome.status_code == 410


@pytest.mark.parametrize("status_code,reason", [(500, "InternalServerError"), (400, "BadDeviceToken"), (429, "TooManyRequests")])
def test_rejections_raise_push_error(p8_pem, status_code, reason):
    handler = lambda request: httpx.Response(status_code, json={"reason": reason})
    with pytest.raises(PushError) as exc:
        _client(p8_pem, handler).send_update_push(DEVICE_TOKEN)
    assert exc.value.status_code == status_code
    assert exc.value.reason == reason
    assert exc.value.kind == "push_failed"


def test_network_error_raises_push_error(p8_pem):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(PushError) as exc:
        _client(p8_pem, handler).send_update_push(DEVICE_TOKEN)
    assert exc.value.reason == "timeout"


def test_unconfigured_client_never_sends(monkeypatch):
    calls = []
    monkeypatch.setitem(config.APPLE_WALLET_SETTINGS, "apns_key", "")

    def handler(request):
        calls.append(request)
        return httpx.Response(200)

    client = ApnsClient(team_id="TEAM123456", key_id="KEY7654321", topic="pass.x", http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    assert client.configured is False
    with pytest.raises(PushError) as exc:
        client.send_update_push(DEVICE_TOKEN)
    assert exc.value.reason == "not_configured"
    assert exc.value.kind == "not_configured"
    assert calls == []
