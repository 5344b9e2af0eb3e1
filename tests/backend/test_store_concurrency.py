from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from backend.app.models import PaymentStatus
from backend.app.services.shares import ShareLedger


def test_concurrent_share_events_do_not_lose_increments(persistence) -> None:
    ledger = ShareLedger(persistence)
    phone = "08100000001"

    with ThreadPoolExecutor(max_workers=8) as executor:
        futures = [executor.submit(ledger.record_share, phone, "friend") for _ in range(7)]
        futures.extend(executor.submit(ledger.record_share, phone, "group") for _ in range(6))
        for future in futures:
            future.result()

    shares = ledger.get_shares(phone)
    assert shares.friends == 7
    assert shares.groups == 2


def test_concurrent_success_confirmations_converge(client, paystack, persistence) -> None:
    init = client.post(
        "/api/init-payment",
        json={"phone": "08100000002", "amount": 800, "email": "a@example.org", "isUpgrade": True},
    )
    reference = init.json()["reference"]
    paystack.complete(reference)
    ledger = client.app.state.payments

    def confirm(index: int) -> bool:
        if index % 2:
            return ledger.verify(reference).success
        event = (
            '{"event":"charge.success","data":{"reference":"%s","amount":80000,'
            '"metadata":{"phone":"08100000002"}}}' % reference
        )
        ledger.handle_webhook(event.encode("utf-8"))
        return True

    with ThreadPoolExecutor(max_workers=6) as executor:
        results = list(executor.map(confirm, range(12)))

    assert all(results)
    stored = persistence.get_payment(reference)
    assert stored.status == PaymentStatus.success
    assert stored.upgrade is True
