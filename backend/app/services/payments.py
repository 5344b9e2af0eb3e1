from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional
from uuid import uuid4

from pydantic import ValidationError

from backend.app.errors import InvalidArgumentError, MalformedPayloadError, NotFoundError
from backend.app.models import PaymentRecord, PaymentStatus, PaystackWebhookEvent, utc_now
from backend.app.services.paystack import (
    PaystackClient,
    PaystackInitialization,
    verify_paystack_signature,
)
from backend.app.services.validation import normalize, require_phone, require_text

if TYPE_CHECKING:
    from backend.app.persistence import SqlPersistence

logger = logging.getLogger("cct_gate.payments")

CHARGE_SUCCESS_EVENT = "charge.success"


def new_reference() -> str:
    return f"PAY-{uuid4()}"


def to_minor_units(amount: object) -> int:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidArgumentError("amount must be a positive number")
    try:
        minor = float(amount) * 100
    except OverflowError as exc:
        raise InvalidArgumentError("amount must be a positive number") from exc
    if not math.isfinite(minor) or round(minor) < 1:
        raise InvalidArgumentError("amount must be a positive number")
    return int(round(minor))


@dataclass(frozen=True)
class VerificationOutcome:
    success: bool
    amount: Optional[float] = None
    is_upgrade: Optional[bool] = None
    message: Optional[str] = None


def _metadata_dict(value: Any) -> dict[str, Any]:
    # Paystack echoes metadata back either as an object or as its JSON string form.
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _metadata_upgrade(metadata: dict[str, Any]) -> Optional[bool]:
    value = metadata.get("isUpgrade")
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    return None


def _event_amount_minor(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0


def resolve_event_phone(data: dict[str, Any]) -> Optional[str]:
    metadata = _metadata_dict(data.get("metadata"))
    customer = data.get("customer") if isinstance(data.get("customer"), dict) else {}
    for candidate in (metadata.get("phone"), customer.get("phone")):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


class PaymentLedger:
    """
    Payment lifecycle per reference: pending at initiation, success once either the
    verify call or the provider webhook confirms it.

    Both confirmation paths go through ``SqlPersistence.mark_payment_success``, which
    only moves a pending record, so they converge on a single success record with the
    upgrade flag chosen at initiation.
    """

    def __init__(
        self,
        *,
        persistence: "SqlPersistence",
        provider: PaystackClient,
        callback_url: str,
        upgrade_threshold_minor: int,
        webhook_secret: str = "",
        verify_webhook_signature: bool = False,
    ) -> None:
        self.persistence = persistence
        self.provider = provider
        self.callback_url = callback_url
        self.upgrade_threshold_minor = upgrade_threshold_minor
        self.webhook_secret = webhook_secret
        self.verify_webhook_signature = verify_webhook_signature

    def initiate(
        self,
        *,
        phone: object,
        amount: Optional[float],
        email: object,
        is_upgrade: bool = False,
    ) -> PaystackInitialization:
        if not isinstance(phone, str) or not phone.strip():
            raise InvalidArgumentError("Phone, amount and email required")
        if not isinstance(email, str) or not email.strip():
            raise InvalidArgumentError("Phone, amount and email required")
        if amount is None:
            raise InvalidArgumentError("Phone, amount and email required")
        amount_minor = to_minor_units(amount)

        normalized_phone = phone.strip()
        reference = new_reference()
        initialization = self.provider.initialize(
            email=email.strip(),
            amount_minor=amount_minor,
            reference=reference,
            callback_url=self.callback_url,
            metadata={"phone": normalized_phone, "isUpgrade": bool(is_upgrade)},
        )
        now = utc_now()
        self.persistence.upsert_payment(
            PaymentRecord(
                reference=reference,
                phone=normalized_phone,
                email=email.strip(),
                amount=amount_minor / 100,
                upgrade=bool(is_upgrade),
                status=PaymentStatus.pending,
                verified_at_utc=None,
                created_at_utc=now,
                updated_at_utc=now,
            )
        )
        logger.info(
            "payment_initiated phone=%s reference=%s amount=%s upgrade=%s",
            normalized_phone,
            reference,
            amount_minor / 100,
            bool(is_upgrade),
        )
        return PaystackInitialization(
            authorization_url=initialization.authorization_url,
            access_code=initialization.access_code,
            reference=reference,
        )

    def verify(self, reference: object, phone: Optional[str] = None) -> VerificationOutcome:
        normalized_reference = require_text(reference, "reference")
        record = self.persistence.get_payment(normalized_reference)
        if not record or (normalize(phone) and normalize(phone) != record.phone):
            raise NotFoundError("Payment not found")

        if record.status == PaymentStatus.success:
            # Already confirmed by an earlier verify call or by the webhook.
            stored = self._confirm_success(
                reference=record.reference,
                phone=record.phone,
                amount=record.amount,
                upgrade=record.upgrade,
                source="verify",
            )
            return self._outcome(stored)

        transaction = self.provider.verify(normalized_reference)
        if transaction.status != "success":
            logger.info(
                "payment_not_completed reference=%s provider_status=%s",
                normalized_reference,
                transaction.status,
            )
            return VerificationOutcome(success=False, message="Payment not completed")

        stored = self._confirm_success(
            reference=record.reference,
            phone=record.phone,
            amount=record.amount,
            upgrade=record.upgrade,
            source="verify",
        )
        return self._outcome(stored)

    def has_paid(self, phone: str) -> bool:
        return self.persistence.has_successful_payment(require_phone(phone))

    def handle_webhook(self, raw_body: bytes, signature: Optional[str] = None) -> str:
        """
        Apply a provider push notification and return a short outcome label.

        Raises ``MalformedPayloadError`` when the body is not a Paystack event envelope;
        every other unusable event is a logged no-op.
        """
        if self.verify_webhook_signature and not verify_paystack_signature(
            raw_body, self.webhook_secret, signature
        ):
            logger.warning("paystack_webhook_rejected reason=invalid_signature")
            return "rejected_signature"

        try:
            event = PaystackWebhookEvent.model_validate(json.loads(raw_body.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            raise MalformedPayloadError("webhook body is not a paystack event envelope") from exc

        if event.event != CHARGE_SUCCESS_EVENT:
            logger.info("paystack_webhook_ignored event=%s", event.event)
            return "ignored_event"

        data = event.data
        reference = data.get("reference")
        if not isinstance(reference, str) or not reference.strip():
            logger.warning("paystack_webhook_unresolved reason=missing_reference")
            return "unresolved_reference"
        phone = resolve_event_phone(data)
        if not phone:
            logger.warning(
                "paystack_webhook_unresolved reason=missing_phone reference=%s",
                reference,
            )
            return "unresolved_phone"

        before = self.persistence.get_payment(reference.strip())
        amount_minor = _event_amount_minor(data.get("amount"))
        if before is None and amount_minor < 1:
            logger.warning(
                "paystack_webhook_unresolved reason=invalid_amount reference=%s",
                reference,
            )
            return "invalid_amount"
        # Only consulted when this event creates the record; an existing record keeps the
        # flag chosen at initiation. An explicit metadata.isUpgrade outranks the threshold.
        upgrade = _metadata_upgrade(_metadata_dict(data.get("metadata")))
        if upgrade is None:
            upgrade = amount_minor >= self.upgrade_threshold_minor

        stored = self._confirm_success(
            reference=reference.strip(),
            phone=phone,
            amount=amount_minor / 100,
            upgrade=upgrade,
            source="webhook",
        )
        if stored.status != PaymentStatus.success:
            return "terminal_state_kept"
        if before and before.status == PaymentStatus.success:
            return "duplicate"
        return "processed"

    def _confirm_success(
        self,
        *,
        reference: str,
        phone: str,
        amount: float,
        upgrade: bool,
        source: str,
    ) -> PaymentRecord:
        stored, transitioned = self.persistence.mark_payment_success(
            reference=reference,
            phone=phone,
            amount=amount,
            upgrade=upgrade,
            verified_at_utc=utc_now(),
        )
        if transitioned:
            logger.info(
                "payment_verified reference=%s phone=%s source=%s upgrade=%s",
                stored.reference,
                stored.phone,
                source,
                stored.upgrade,
            )
        elif stored.status == PaymentStatus.failed:
            logger.warning(
                "payment_success_ignored reference=%s status=failed source=%s",
                stored.reference,
                source,
            )
        if stored.status == PaymentStatus.success and stored.upgrade:
            if self.persistence.mark_application_upgraded(stored.phone):
                logger.info(
                    "application_upgraded phone=%s reference=%s",
                    stored.phone,
                    stored.reference,
                )
        return stored

    @staticmethod
    def _outcome(record: PaymentRecord) -> VerificationOutcome:
        if record.status != PaymentStatus.success:
            return VerificationOutcome(success=False, message="Payment already marked failed")
        return VerificationOutcome(
            success=True,
            amount=record.amount,
            is_upgrade=record.upgrade,
        )
