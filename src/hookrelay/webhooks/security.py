"""Webhook security utilities.

Provides HMAC signature generation and verification for
outbound webhook deliveries.

Receivers must verify against the raw request body exactly as transmitted.
Re-serializing parsed JSON can reorder keys or change whitespace and will not
reproduce the signed bytes.
"""

import hmac
import hashlib
import json
from typing import Any, Dict, Optional, Union

SIGNATURE_PREFIX = "sha256="

BytesLike = Union[bytes, str]


def _to_bytes(value: BytesLike) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def serialize_envelope(envelope: Dict[str, Any]) -> bytes:
    """Serialize an envelope into the exact bytes that are sent and signed."""
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_payload(body: BytesLike, secret: BytesLike) -> str:
    """Generate the HMAC-SHA256 signature for a payload.

    Args:
        body: The serialized request body.
        secret: The shared secret key.

    Returns:
        Lowercase hex digest.
    """
    return hmac.new(_to_bytes(secret), _to_bytes(body), hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: BytesLike,
    provided_signature: Optional[str],
    secret: BytesLike,
) -> bool:
    """Verify an HMAC-SHA256 signature for a received webhook.

    Args:
        raw_body: The raw request body, as received.
        provided_signature: Hex signature from the X-Signature header, with or
            without the ``sha256=`` prefix.
        secret: The shared secret key.

    Returns:
        True if the signature matches.
    """
    if not provided_signature:
        return False
    if provided_signature.startswith(SIGNATURE_PREFIX):
        provided_signature = provided_signature[len(SIGNATURE_PREFIX):]

    expected = sign_payload(raw_body, secret)

    # Constant-time comparison to prevent timing attacks
    return hmac.compare_digest(
        provided_signature.strip().lower().encode("ascii", "replace"),
        expected.encode("ascii"),
    )


def generate_webhook_headers(
    envelope: Dict[str, Any],
    body: bytes,
    secret: Optional[str],
    user_agent: str,
) -> Dict[str, str]:
    """Generate headers for an outbound webhook request.

    Args:
        envelope: The envelope that ``body`` was serialized from.
        body: The serialized envelope.
        secret: The subscription's secret; no signature header when empty.
        user_agent: Value for the User-Agent header.

    Returns:
        Dict of headers to include in the webhook request.
    """
    headers = {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
        "X-Webhook-ID": envelope["id"],
        "X-Event-Type": envelope["event"],
        "X-Timestamp": envelope["timestamp"],
    }
    if secret:
        headers["X-Signature"] = f"{SIGNATURE_PREFIX}{sign_payload(body, secret)}"
    return headers
