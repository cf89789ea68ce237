"""Webhook Signatures — HMAC-SHA256 verification of payment processor callbacks.

Invariants:
    - Header format: "t=<unix seconds>,v1=<hex digest>[,v1=<hex digest>...]"
    - Signed payload is "<t>.<raw body>"; comparison is constant-time over bytes
    - A v1 value that is not hex is a malformed header, never a server error
    - Timestamps older (or newer) than `tolerance_seconds` are rejected
"""

import hashlib
import hmac
import string
import time

from settlement.core.errors import WebhookSignatureError

_HEX_DIGITS = frozenset(string.hexdigits)


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(payload: bytes, secret: str, timestamp: int) -> str:
    return f"t={timestamp},v1={compute_signature(payload, secret, timestamp)}"


def parse_signature_header(header: str) -> tuple[int, list[str]]:
    """Split a signature header into (timestamp, [v1 signatures])."""
    timestamp = None
    signatures = []
    for part in header.split(","):
        if "=" not in part:
            continue
        key, value = part.strip().split("=", 1)
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise WebhookSignatureError("timestamp is not an integer")
        elif key == "v1":
            if not value or not _HEX_DIGITS.issuperset(value):
                raise WebhookSignatureError("v1 signature is not hex")
            signatures.append(value)
    if timestamp is None:
        raise WebhookSignatureError("missing timestamp")
    if not signatures:
        raise WebhookSignatureError("missing v1 signature")
    return timestamp, signatures


def verify_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> int:
    """Verify `header` against `payload`. Returns the signed timestamp."""
    if not header:
        raise WebhookSignatureError("missing signature header")
    if not secret:
        raise WebhookSignatureError("webhook secret not configured")

    timestamp, signatures = parse_signature_header(header)
    current = time.time() if now is None else now
    if tolerance_seconds > 0 and abs(current - timestamp) > tolerance_seconds:
        raise WebhookSignatureError("timestamp outside tolerance")

    expected = compute_signature(payload, secret, timestamp).encode()
    if not any(hmac.compare_digest(expected, s.lower().encode()) for s in signatures):
        raise WebhookSignatureError("signature mismatch")
    return timestamp
