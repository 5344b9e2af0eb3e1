from __future__ import annotations

from typing import Optional

from backend.app.errors import InvalidArgumentError


def normalize(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.strip()


def require_text(value: object, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{field_name} required")
    return value.strip()


def require_phone(value: object) -> str:
    return require_text(value, "phone")
