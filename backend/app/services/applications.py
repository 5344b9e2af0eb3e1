from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from backend.app.errors import ForbiddenError, NotFoundError
from backend.app.models import ApplicationRecord
from backend.app.services.eligibility import EligibilityEvaluator
from backend.app.services.validation import require_phone

if TYPE_CHECKING:
    from backend.app.persistence import SqlPersistence

logger = logging.getLogger("cct_gate.applications")

# Managed by the gate itself; never taken from the submitted form.
RESERVED_FIELDS = {"phone", "upgraded", "updatedAt", "createdAt"}


class ApplicationGate:
    def __init__(self, *, persistence: "SqlPersistence", evaluator: EligibilityEvaluator) -> None:
        self.persistence = persistence
        self.evaluator = evaluator

    def submit(self, phone: object, form_data: dict[str, Any]) -> ApplicationRecord:
        normalized_phone = require_phone(phone)
        decision = self.evaluator.evaluate(normalized_phone)
        if not decision.can_access_form:
            logger.info(
                "application_rejected phone=%s friends=%s groups=%s",
                normalized_phone,
                decision.shares.friends,
                decision.shares.groups,
            )
            raise ForbiddenError("Complete WhatsApp sharing requirements first")

        fields = {key: value for key, value in form_data.items() if key not in RESERVED_FIELDS}
        record = self.persistence.upsert_application(normalized_phone, fields)
        logger.info(
            "application_saved phone=%s upgraded=%s",
            normalized_phone,
            record.upgraded,
        )
        return record

    def get_application(self, phone: object) -> ApplicationRecord:
        normalized_phone = require_phone(phone)
        record = self.persistence.get_application(normalized_phone)
        if not record:
            raise NotFoundError(f"application not found: {normalized_phone}")
        return record
