from __future__ import annotations

import pytest

from backend.app.models import ShareRecord
from backend.app.services.eligibility import meets_share_quota


def record_shares(client, phone: str, *, friends: int, groups: int) -> None:
    for _ in range(friends):
        client.post("/api/share", json={"phone": phone, "type": "friend"})
    for _ in range(groups):
        client.post("/api/share", json={"phone": phone, "type": "group"})


@pytest.mark.parametrize(
    ("friends", "groups", "expected"),
    [
        (9, 2, False),
        (10, 1, False),
        (10, 2, True),
        (0, 0, False),
        (10, 0, False),
        (0, 2, False),
    ],
)
def test_can_access_form_boundary(client, friends, groups, expected) -> None:
    phone = f"0805{friends:02d}{groups:02d}0000"
    record_shares(client, phone, friends=friends, groups=groups)

    response = client.get("/api/eligibility", params={"phone": phone})
    assert response.status_code == 200
    body = response.json()
    assert body["canAccessForm"] is expected
    assert body["paid"] is False
    assert body["shares"] == {"friends": friends, "groups": groups}


def test_eligibility_without_phone_is_false(client) -> None:
    response = client.get("/api/eligibility")
    assert response.status_code == 200
    assert response.json() == {
        "canAccessForm": False,
        "paid": False,
        "shares": {"friends": 0, "groups": 0},
    }


@pytest.mark.parametrize(
    ("friends", "groups", "expected"),
    [(9, 2, False), (10, 1, False), (10, 2, True)],
)
def test_meets_share_quota(friends, groups, expected) -> None:
    shares = ShareRecord(phone="08050000000", friends=friends, groups=groups)
    assert meets_share_quota(shares) is expected


def test_paid_reflects_successful_payment(client, paystack) -> None:
    phone = "08050000099"
    init = client.post(
        "/api/init-payment",
        json={"phone": phone, "amount": 2000, "email": "ada@example.org"},
    )
    reference = init.json()["reference"]

    before = client.get("/api/eligibility", params={"phone": phone}).json()
    paystack.complete(reference)
    client.get("/api/verify-payment", params={"reference": reference})
    after = client.get("/api/eligibility", params={"phone": phone}).json()

    assert before["paid"] is False
    assert after["paid"] is True
    assert after["canAccessForm"] is False
