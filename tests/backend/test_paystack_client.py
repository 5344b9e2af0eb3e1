from __future__ import annotations

import hashlib
import hmac
import io
import json
from urllib.error import HTTPError, URLError

import pytest

from backend.app.errors import UpstreamError
from backend.app.services import paystack as paystack_module
from backend.app.services.paystack import (
    PaystackClient,
    PaystackServiceError,
    verify_paystack_signature,
)


class FakeResponse:
    def __init__(self, payload: object) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


def _client() -> PaystackClient:
    return PaystackClient(secret_key="sk_test_secret", base_url="https://api.paystack.test/")


def test_initialize_posts_transaction(monkeypatch) -> None:
    captured = {}

    def fake_urlopen(req, timeout):
        captured["url"] = req.full_url
        captured["method"] = req.get_method()
        captured["auth"] = req.get_header("Authorization")
        captured["body"] = json.loads(req.data.decode("utf-8"))
        captured["timeout"] = timeout
        return FakeResponse(
            {
                "status": True,
                "data": {
                    "authorization_url": "https://checkout.paystack.com/abc",
                    "access_code": "abc",
                    "reference": "PAY-1",
                },
            }
        )

    monkeypatch.setattr(paystack_module.request, "urlopen", fake_urlopen)
    result = _client().initialize(
        email="a@example.org",
        amount_minor=500000,
        reference="PAY-1",
        callback_url="https://gate.example.org/api/verify-payment",
        metadata={"phone": "0809", "isUpgrade": True},
    )

    assert result.authorization_url == "https://checkout.paystack.com/abc"
    assert result.access_code == "abc"
    assert captured["url"] == "https://api.paystack.test/transaction/initialize"
    assert captured["method"] == "POST"
    assert captured["auth"] == "Bearer sk_test_secret"
    assert captured["body"]["amount"] == 500000
    assert captured["body"]["metadata"] == {"phone": "0809", "isUpgrade": True}
    assert captured["timeout"] == 15


def test_verify_reads_transaction(monkeypatch) -> None:
    def fake_urlopen(req, timeout):
        assert req.full_url == "https://api.paystack.test/transaction/verify/PAY-2"
        assert req.get_method() == "GET"
        return FakeResponse(
            {
                "status": True,
                "data": {
                    "reference": "PAY-2",
                    "status": "success",
                    "amount": 120000,
                    "metadata": {"phone": "0809"},
                },
            }
        )

    monkeypatch.setattr(paystack_module.request, "urlopen", fake_urlopen)
    transaction = _client().verify("PAY-2")

    assert transaction.status == "success"
    assert transaction.amount_minor == 120000
    assert transaction.metadata == {"phone": "0809"}


def test_http_error_becomes_upstream_error(monkeypatch) -> None:
    def fake_urlopen(req, timeout):
        raise HTTPError(req.full_url, 401, "Unauthorized", {}, io.BytesIO(b"{}"))

    monkeypatch.setattr(paystack_module.request, "urlopen", fake_urlopen)
    with pytest.raises(UpstreamError):
        _client().verify("PAY-3")


def test_network_error_becomes_upstream_error(monkeypatch) -> None:
    def fake_urlopen(req, timeout):
        raise URLError("timed out")

    monkeypatch.setattr(paystack_module.request, "urlopen", fake_urlopen)
    with pytest.raises(PaystackServiceError):
        _client().initialize(
            email="a@example.org",
            amount_minor=100,
            reference="PAY-4",
            callback_url="https://gate.example.org/api/verify-payment",
            metadata={},
        )


def test_rejected_status_becomes_upstream_error(monkeypatch) -> None:
    monkeypatch.setattr(
        paystack_module.request,
        "urlopen",
        lambda req, timeout: FakeResponse({"status": False, "message": "Invalid key"}),
    )
    with pytest.raises(PaystackServiceError, match="Invalid key"):
        _client().verify("PAY-5")


def test_signature_helper() -> None:
    body = b'{"event":"charge.success"}'
    signature = hmac.new(b"secret", body, hashlib.sha512).hexdigest()
    assert verify_paystack_signature(body, "secret", signature)
    assert not verify_paystack_signature(body, "secret", "0" * 128)
    assert not verify_paystack_signature(body, "secret", None)
    assert not verify_paystack_signature(body, "", signature)
