from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from backend.app.main import create_app
from backend.app.persistence import SqlPersistence
from backend.app.services.paystack import (
    PaystackInitialization,
    PaystackServiceError,
    PaystackTransaction,
)


class FakePaystack:
    def __init__(self) -> None:
        self.initialized: dict[str, dict[str, Any]] = {}
        self.statuses: dict[str, str] = {}
        self.verify_calls: list[str] = []
        self.fail_initialize = False
        self.fail_verify = False

    def initialize(
        self,
        *,
        email: str,
        amount_minor: int,
        reference: str,
        callback_url: str,
        metadata: dict[str, Any],
    ) -> PaystackInitialization:
        if self.fail_initialize:
            raise PaystackServiceError("paystack POST /transaction/initialize returned 503")
        self.initialized[reference] = {
            "email": email,
            "amount_minor": amount_minor,
            "callback_url": callback_url,
            "metadata": metadata,
        }
        return PaystackInitialization(
            authorization_url=f"https://checkout.paystack.com/{reference}",
            access_code=f"acc_{len(self.initialized)}",
            reference=reference,
        )

    def verify(self, reference: str) -> PaystackTransaction:
        self.verify_calls.append(reference)
        if self.fail_verify:
            raise PaystackServiceError("paystack GET /transaction/verify returned 502")
        details = self.initialized.get(reference, {})
        return PaystackTransaction(
            reference=reference,
            status=self.statuses.get(reference, "abandoned"),
            amount_minor=details.get("amount_minor", 0),
            metadata=details.get("metadata", {}),
        )

    def complete(self, reference: str, status: str = "success") -> None:
        self.statuses[reference] = status


@pytest.fixture()
def paystack() -> FakePaystack:
    return FakePaystack()


@pytest.fixture()
def database_url(tmp_path) -> str:
    return f"sqlite:///{(tmp_path / 'cct_gate.sqlite3').as_posix()}"


@pytest.fixture()
def make_client(monkeypatch: pytest.MonkeyPatch, database_url: str, paystack: FakePaystack):
    def build(**env: str) -> TestClient:
        monkeypatch.setenv("DATABASE_URL", database_url)
        monkeypatch.setenv("PUBLIC_BASE_URL", "https://gate.example.org")
        monkeypatch.setenv("PAYSTACK_SECRET_KEY", "sk_test_secret")
        monkeypatch.delenv("PAYSTACK_VERIFY_WEBHOOK_SIGNATURE", raising=False)
        monkeypatch.delenv("UPGRADE_THRESHOLD_MINOR", raising=False)
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        return TestClient(create_app(payment_provider=paystack))

    return build


@pytest.fixture()
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture()
def persistence(database_url: str) -> SqlPersistence:
    return SqlPersistence(database_url)
