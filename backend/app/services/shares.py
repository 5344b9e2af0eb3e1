from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from backend.app.errors import InvalidArgumentError
from backend.app.models import ShareKind, ShareRecord
from backend.app.services.validation import require_phone

if TYPE_CHECKING:
    from backend.app.persistence import SqlPersistence

logger = logging.getLogger("cct_gate.shares")

FRIEND_SHARE_CAP = 10
GROUP_SHARE_CAP = 2

SHARE_CAPS = {
    ShareKind.friend: FRIEND_SHARE_CAP,
    ShareKind.group: GROUP_SHARE_CAP,
}


def parse_share_kind(value: object) -> ShareKind:
    if isinstance(value, ShareKind):
        return value
    if not isinstance(value, str):
        raise InvalidArgumentError("share type must be 'friend' or 'group'")
    try:
        return ShareKind(value)
    except ValueError as exc:
        raise InvalidArgumentError("share type must be 'friend' or 'group'") from exc


class ShareLedger:
    """Capped per-phone counters of friend and group shares."""

    def __init__(self, persistence: "SqlPersistence") -> None:
        self.persistence = persistence

    def record_share(self, phone: object, kind: object) -> ShareRecord:
        normalized_phone = require_phone(phone)
        share_kind = parse_share_kind(kind)
        record = self.persistence.increment_share(
            normalized_phone,
            share_kind,
            cap=SHARE_CAPS[share_kind],
        )
        logger.info(
            "share_recorded phone=%s kind=%s friends=%s groups=%s",
            normalized_phone,
            share_kind.value,
            record.friends,
            record.groups,
        )
        return record

    def get_shares(self, phone: str) -> ShareRecord:
        normalized_phone = require_phone(phone)
        record = self.persistence.get_shares(normalized_phone)
        return record or ShareRecord(phone=normalized_phone)
