"""HMAC-SHA256 signing for outbound webhook deliveries.

Receivers verify a delivery by recomputing the HMAC over
``"<timestamp>." + raw_body`` with their copy of the subscription secret
and comparing it with the ``v1`` value of ``X-Courier-Signature``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any

SIGNATURE_HEADER = "X-Courier-Signature"
TIMESTAMP_HEADER = "X-Courier-Timestamp"
SIGNATURE_VERSION = "v1"
SIGNATURE_ALGORITHM = "HMAC-SHA256"


def canonical_body(body: Any) -> bytes:
    """Serialize a delivery body exactly once, in its signed form.

    Keys are sorted and separators compact so the same body always
    produces the same bytes.
    """
    return json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def _as_bytes(body: str | bytes) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


def compute_signature(body: str | bytes, secret: str, timestamp: int) -> str:
    """Compute the signature header value for a body.

    Args:
        body: Raw request body as sent on the wire.
        secret: Subscription secret.
        timestamp: Epoch seconds sent in X-Courier-Timestamp.

    Returns:
        Signature in format "v1=<hex_digest>,alg=HMAC-SHA256".
    """
    message = f"{timestamp}.".encode() + _as_bytes(body)
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=message,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_VERSION}={digest},alg={SIGNATURE_ALGORITHM}"


def parse_signature_header(header: str) -> dict[str, str]:
    """Split a signature header into its ``key=value`` parts."""
    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def verify_signature(
    body: str | bytes,
    secret: str,
    signature: str,
    timestamp: int | str,
    tolerance_seconds: float | None = None,
    now: float | None = None,
) -> bool:
    """Verify a delivery signature.

    Args:
        body: Raw request body that was signed.
        secret: Subscription secret.
        signature: Value of X-Courier-Signature.
        timestamp: Value of X-Courier-Timestamp.
        tolerance_seconds: Reject timestamps further than this from ``now``.
        now: Current epoch seconds (defaults to the wall clock).

    Returns:
        True if the signature is valid, False otherwise.
    """
    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        return False

    if tolerance_seconds is not None:
        current = now if now is not None else time.time()
        if abs(current - ts) > tolerance_seconds:
            return False

    provided = parse_signature_header(signature).get(SIGNATURE_VERSION)
    if provided is None:
        return False

    expected = parse_signature_header(compute_signature(body, secret, ts))[SIGNATURE_VERSION]
    return hmac.compare_digest(expected, provided)


def signature_headers(body: bytes, secret: str, timestamp: int | None = None) -> dict[str, str]:
    """Build the timestamp and signature headers for a body."""
    ts = timestamp if timestamp is not None else int(time.time())
    return {
        TIMESTAMP_HEADER: str(ts),
        SIGNATURE_HEADER: compute_signature(body, secret, ts),
    }


__all__ = [
    "SIGNATURE_ALGORITHM",
    "SIGNATURE_HEADER",
    "SIGNATURE_VERSION",
    "TIMESTAMP_HEADER",
    "canonical_body",
    "compute_signature",
    "parse_signature_header",
    "signature_headers",
    "verify_signature",
]
