from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from backend.app.models import ShareRecord
from backend.app.services.shares import FRIEND_SHARE_CAP, GROUP_SHARE_CAP, ShareLedger
from backend.app.services.validation import require_phone

if TYPE_CHECKING:
    from backend.app.services.payments import PaymentLedger


@dataclass(frozen=True)
class EligibilityDecision:
    can_access_form: bool
    paid: bool
    shares: ShareRecord


def meets_share_quota(shares: ShareRecord) -> bool:
    return shares.friends >= FRIEND_SHARE_CAP and shares.groups >= GROUP_SHARE_CAP


class EligibilityEvaluator:
    def __init__(self, *, shares: ShareLedger, payments: "PaymentLedger") -> None:
        self.shares = shares
        self.payments = payments

    def evaluate(self, phone: object) -> EligibilityDecision:
        normalized_phone = require_phone(phone)
        shares = self.shares.get_shares(normalized_phone)
        return EligibilityDecision(
            can_access_form=meets_share_quota(shares),
            paid=self.payments.has_paid(normalized_phone),
            shares=shares,
        )
