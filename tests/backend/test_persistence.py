from __future__ import annotations

from backend.app.models import PaymentStatus, ShareKind, utc_now
from backend.app.persistence import SqlPersistence


def test_state_persists_across_restart(make_client, paystack) -> None:
    phone = "08090000001"
    first_client = make_client()
    for _ in range(3):
        first_client.post("/api/share", json={"phone": phone, "type": "friend"})
    init = first_client.post(
        "/api/init-payment",
        json={"phone": phone, "amount": 1000, "email": "a@example.org"},
    )
    reference = init.json()["reference"]

    restarted_client = make_client()
    status = restarted_client.get("/api/share-status", params={"phone": phone})
    assert status.json() == {"friends": 3, "groups": 0}

    paystack.complete(reference)
    verified = restarted_client.get("/api/verify-payment", params={"reference": reference})
    assert verified.json()["success"] is True


def test_sqlite_url_creates_missing_parent_directories(tmp_path) -> None:
    db_path = tmp_path / "nested" / "cct_gate.sqlite3"
    persistence = SqlPersistence(f"sqlite:///{db_path.as_posix()}")
    assert db_path.parent.exists()
    assert persistence.ping()


def test_plain_path_is_treated_as_sqlite_file(tmp_path) -> None:
    db_path = tmp_path / "plain" / "gate.sqlite3"
    persistence = SqlPersistence(str(db_path))
    assert persistence.database_url.startswith("sqlite:///")
    assert persistence.ping()


def test_increment_share_clamps_at_cap(persistence) -> None:
    for _ in range(4):
        record = persistence.increment_share("08090000002", ShareKind.group, cap=2)
    assert record.groups == 2
    assert record.friends == 0


def test_mark_payment_success_inserts_missing_reference(persistence) -> None:
    now = utc_now()
    record, transitioned = persistence.mark_payment_success(
        reference="PAY-new",
        phone="08090000003",
        amount=1200,
        upgrade=True,
        verified_at_utc=now,
    )
    assert transitioned is True
    assert record.status == PaymentStatus.success
    assert record.verified_at_utc == now

    again, transitioned_again = persistence.mark_payment_success(
        reference="PAY-new",
        phone="08090000099",
        amount=1,
        upgrade=False,
        verified_at_utc=utc_now(),
    )
    assert transitioned_again is False
    assert again == record


def test_mark_application_upgraded_is_one_way(persistence) -> None:
    assert persistence.mark_application_upgraded("08090000004") is False

    persistence.upsert_application("08090000004", {"name": "D"})
    assert persistence.mark_application_upgraded("08090000004") is True
    assert persistence.mark_application_upgraded("08090000004") is False

    resubmitted = persistence.upsert_application("08090000004", {"name": "E"})
    assert resubmitted.upgraded is True
    assert resubmitted.fields == {"name": "E"}
