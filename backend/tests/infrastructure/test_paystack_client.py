import hashlib
import hmac
import json
from datetime import datetime, timezone

import httpx
import pytest

from daycare.application.errors import GatewayError
from daycare.infrastructure.gateway.paystack_client import PaystackClient

SECRET = "sk_test_secret"


def _client(handler) -> PaystackClient:
    return PaystackClient(
        secret_key=SECRET,
        public_key="pk_test_public",
        base_url="https://api.paystack.test",
        callback_url="https://daycare.test/payments/callback",
        transport=httpx.MockTransport(handler),
    )


def test_initialize_transaction_posts_minor_amount_and_metadata():
    """
    Validate transaction initialization request and response mapping.

    1. Stub the initialize endpoint capturing the request.
    2. Initialize a 200.00 GHS transaction in minor units.
    3. Validate bearer auth, body fields and callback url were sent.
    4. Validate authorization url and access code are returned.
    """
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": "https://checkout.paystack.com/abc",
                    "access_code": "abc",
                    "reference": "PAY-1",
                },
            },
        )

    result = _client(handler).initialize_transaction(
        email="parent@example.com",
        amount_minor=20000,
        reference="PAY-1",
        currency="GHS",
        metadata={"tenant_id": 1},
        channels=["card"],
    )

    assert captured["path"] == "/transaction/initialize"
    assert captured["auth"] == f"Bearer {SECRET}"
    assert captured["body"] == {
        "email": "parent@example.com",
        "amount": 20000,
        "reference": "PAY-1",
        "currency": "GHS",
        "metadata": {"tenant_id": 1},
        "channels": ["card"],
        "callback_url": "https://daycare.test/payments/callback",
    }
    assert result.authorization_url == "https://checkout.paystack.com/abc"
    assert result.access_code == "abc"


def test_verify_transaction_maps_success_payload():
    """
    Validate verification responses are mapped to a TransactionVerification.

    1. Stub the verify endpoint with a successful charge.
    2. Verify the reference once.
    3. Validate success flag, settlement time and transaction id.
    4. Validate card last four digits are exposed.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/transaction/verify/PAY-2"
        return httpx.Response(
            200,
            json={
                "status": True,
                "data": {
                    "id": 4099260516,
                    "status": "success",
                    "reference": "PAY-2",
                    "gateway_response": "Approved",
                    "paid_at": "2026-10-17T10:30:00.000Z",
                    "authorization": {"last4": "4081", "channel": "card"},
                },
            },
        )

    result = _client(handler).verify_transaction("PAY-2")

    assert result.success is True
    assert result.settled_at == datetime(2026, 10, 17, 10, 30, tzinfo=timezone.utc)
    assert result.transaction_id == "4099260516"
    assert result.card_last_four_digits == "4081"


def test_verify_transaction_reports_declined_charge():
    """
    Validate declined charges map to an unsuccessful verification.

    1. Stub the verify endpoint with a failed charge payload.
    2. Verify the reference.
    3. Validate success is false with the gateway reason.
    4. Validate no settlement time is reported.
    """

    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"status": True, "data": {"status": "failed", "reference": "PAY-3", "gateway_response": "Declined"}},
        )

    result = _client(handler).verify_transaction("PAY-3")

    assert result.success is False
    assert result.gateway_response == "Declined"
    assert result.settled_at is None


def test_gateway_rejections_and_timeouts_raise_gateway_error():
    """
    Validate transport failures and API rejections surface as GatewayError.

    1. Stub an endpoint that returns a 400 with a provider message.
    2. Stub an endpoint that times out.
    3. Call verify against both stubs.
    4. Validate GatewayError messages for each case.
    """

    def rejecting(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"status": False, "message": "Transaction reference not found"})

    def timing_out(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayError) as rejected:
        _client(rejecting).verify_transaction("PAY-404")
    with pytest.raises(GatewayError) as timed_out:
        _client(timing_out).verify_transaction("PAY-SLOW")

    assert str(rejected.value) == "Transaction reference not found"
    assert str(timed_out.value) == "Payment gateway timed out during verify payment"


def test_malformed_gateway_bodies_raise_gateway_error():
    """
    Validate unexpected response shapes surface as GatewayError.

    1. Stub an endpoint answering 200 with a JSON array.
    2. Stub an endpoint answering a successful envelope whose data is a string.
    3. Call verify against both stubs.
    4. Validate GatewayError messages for each case.
    """

    def array_body(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"status": "success"}])

    def string_data(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": True, "data": "success"})

    with pytest.raises(GatewayError) as array_error:
        _client(array_body).verify_transaction("PAY-ARRAY")
    with pytest.raises(GatewayError) as data_error:
        _client(string_data).verify_transaction("PAY-STRING")

    assert str(array_error.value) == "Failed to verify payment"
    assert str(data_error.value) == "Unexpected gateway response during verify payment"


def test_refund_transaction_sends_optional_amount():
    """
    Validate refunds send the amount only when one is given.

    1. Stub the refund endpoint capturing request bodies.
    2. Request a full refund.
    3. Request a partial refund of 5000 minor units.
    4. Validate both request bodies.
    """
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return httpx.Response(200, json={"status": True, "data": {"status": "pending"}})

    client = _client(handler)
    client.refund_transaction("PAY-4")
    client.refund_transaction("PAY-4", 5000)

    assert captured == [{"transaction": "PAY-4"}, {"transaction": "PAY-4", "amount": 5000}]


def test_verify_webhook_signature_matches_hmac_sha512_of_raw_body():
    """
    Validate webhook signatures are checked over the exact raw bytes.

    1. Sign a raw body with the secret key using HMAC-SHA512.
    2. Verify the matching signature.
    3. Verify a signature for a re-serialized body.
    4. Validate only the exact signature is accepted.
    """
    raw_body = b'{"event":"charge.success","data":{"reference":"PAY-5"}}'
    signature = hmac.new(SECRET.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
    client = _client(lambda request: httpx.Response(200, json={"status": True}))

    assert client.verify_webhook_signature(raw_body, signature) is True
    assert client.verify_webhook_signature(raw_body.replace(b":", b": "), signature) is False
    assert client.verify_webhook_signature(raw_body, None) is False


def test_is_configured_requires_both_keys():
    """
    Validate the client is configured only with both keys.

    1. Build a client with secret and public keys.
    2. Build a client without a secret key.
    3. Build a client without a public key.
    4. Validate only the first reports configured.
    """
    assert _client(lambda request: httpx.Response(200)).is_configured() is True
    assert PaystackClient(secret_key="", public_key="pk").is_configured() is False
    assert PaystackClient(secret_key="sk", public_key="").is_configured() is False
