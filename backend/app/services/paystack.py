from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib import parse, request
from urllib.error import HTTPError, URLError

from backend.app.errors import UpstreamError


class PaystackServiceError(UpstreamError):
    pass


@dataclass(frozen=True)
class PaystackInitialization:
    authorization_url: str
    access_code: str
    reference: str


@dataclass(frozen=True)
class PaystackTransaction:
    reference: str
    status: str
    amount_minor: int
    metadata: dict[str, Any] = field(default_factory=dict)


class PaystackClient:
    def __init__(self, *, secret_key: str, base_url: str, timeout_seconds: int = 15) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def initialize(
        self,
        *,
        email: str,
        amount_minor: int,
        reference: str,
        callback_url: str,
        metadata: dict[str, Any],
    ) -> PaystackInitialization:
        data = self._call(
            "POST",
            "/transaction/initialize",
            {
                "email": email,
                "amount": amount_minor,
                "reference": reference,
                "callback_url": callback_url,
                "metadata": metadata,
            },
        )
        authorization_url = data.get("authorization_url")
        access_code = data.get("access_code")
        if not isinstance(authorization_url, str) or not isinstance(access_code, str):
            raise PaystackServiceError("paystack initialize response missing authorization data")
        return PaystackInitialization(
            authorization_url=authorization_url,
            access_code=access_code,
            reference=str(data.get("reference") or reference),
        )

    def verify(self, reference: str) -> PaystackTransaction:
        data = self._call("GET", f"/transaction/verify/{parse.quote(reference, safe='')}")
        metadata = data.get("metadata")
        return PaystackTransaction(
            reference=str(data.get("reference") or reference),
            status=str(data.get("status") or "unknown"),
            amount_minor=int(data.get("amount") or 0),
            metadata=metadata if isinstance(metadata, dict) else {},
        )

    def _call(self, method: str, path: str, payload: Optional[dict] = None) -> dict[str, Any]:
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = request.Request(
            f"{self.base_url}{path}",
            data=body,
            method=method,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            raise PaystackServiceError(f"paystack {method} {path} returned {exc.code}") from exc
        except (URLError, TimeoutError) as exc:
            raise PaystackServiceError(f"paystack {method} {path} request failed") from exc

        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PaystackServiceError("paystack response was not valid json") from exc
        if not isinstance(decoded, dict) or not decoded.get("status"):
            message = decoded.get("message") if isinstance(decoded, dict) else None
            raise PaystackServiceError(f"paystack rejected request: {message or 'unknown error'}")
        data = decoded.get("data")
        if not isinstance(data, dict):
            raise PaystackServiceError("paystack response missing data object")
        return data


def verify_paystack_signature(raw_body: bytes, secret: str, signature: Optional[str]) -> bool:
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature.strip())
