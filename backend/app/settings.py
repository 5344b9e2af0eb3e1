from __future__ import annotations

import os
from dataclasses import dataclass


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _list_env(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values = [item.strip() for item in raw.split(",") if item.strip()]
    return values or default


@dataclass(frozen=True)
class Settings:
    app_env: str
    database_path: str
    database_url: str
    paystack_secret_key: str
    paystack_base_url: str
    paystack_timeout_seconds: int
    paystack_verify_webhook_signature: bool
    public_base_url: str
    upgrade_threshold_minor: int
    cors_allow_origins: list[str]

    @property
    def payment_callback_url(self) -> str:
        return f"{self.public_base_url}/api/verify-payment"


def _public_base_url() -> str:
    value = os.getenv("PUBLIC_BASE_URL", "").strip()
    if not value:
        # Vercel exposes the deployment host without a scheme.
        vercel_host = os.getenv("VERCEL_URL", "").strip()
        if vercel_host:
            value = vercel_host if "://" in vercel_host else f"https://{vercel_host}"
    return (value or "http://127.0.0.1:8000").rstrip("/")


def load_settings() -> Settings:
    database_path = os.getenv("DATABASE_PATH", "data/cct_gate.sqlite3").strip()
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        database_url = f"sqlite:///{database_path.replace(chr(92), '/')}"
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        database_path=database_path,
        database_url=database_url,
        paystack_secret_key=os.getenv("PAYSTACK_SECRET_KEY", "").strip(),
        paystack_base_url=os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
        .strip()
        .rstrip("/"),
        paystack_timeout_seconds=max(1, _int_env("PAYSTACK_TIMEOUT_SECONDS", 15)),
        paystack_verify_webhook_signature=_bool_env("PAYSTACK_VERIFY_WEBHOOK_SIGNATURE", False),
        public_base_url=_public_base_url(),
        upgrade_threshold_minor=max(1, _int_env("UPGRADE_THRESHOLD_MINOR", 100_000)),
        cors_allow_origins=_list_env("CORS_ALLOW_ORIGINS", ["*"]),
    )
