from __future__ import annotations

import argparse
import hashlib
import hmac
import json
import sys
import urllib.error
import urllib.request


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def post_json(url: str, body: bytes, headers: dict[str, str]) -> tuple[int, str]:
    request = urllib.request.Request(url, data=body, method="POST")
    request.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=15) as response:
            content = response.read().decode("utf-8")
            return response.status, content
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode("utf-8")


def main() -> int:
    parser = argparse.ArgumentParser(description="Send a mock Paystack webhook to the local API.")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    parser.add_argument("--reference", required=True)
    parser.add_argument("--phone", default=None)
    parser.add_argument("--amount", type=int, default=500000, help="amount in kobo")
    parser.add_argument("--event", default="charge.success")
    parser.add_argument("--upgrade", choices=["true", "false"], default=None)
    parser.add_argument("--secret", default="")
    args = parser.parse_args()

    metadata: dict[str, object] = {}
    if args.phone:
        metadata["phone"] = args.phone
    if args.upgrade is not None:
        metadata["isUpgrade"] = args.upgrade == "true"
    payload = {
        "event": args.event,
        "data": {
            "reference": args.reference,
            "amount": args.amount,
            "status": "success",
            "metadata": metadata,
        },
    }
    body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    headers: dict[str, str] = {}
    if args.secret:
        headers["X-Paystack-Signature"] = sign_payload(args.secret, body)
    status_code, response = post_json(
        f"{args.base_url.rstrip('/')}/api/paystack-webhook", body, headers
    )
    print(f"{status_code} {args.reference} {response}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
