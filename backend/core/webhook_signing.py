"""Webhook HMAC signature generation and verification.

Inbound workflow webhooks may be signed with the workflow's trigger
secret:

  x-webhook-signature: <hex_digest>      (``x-signature`` is also accepted)

where the digest is HMAC-SHA256 over the raw request body. A ``sha256=``
prefix on the header value is tolerated.

Usage:
    # Signing (sender side, tests)
    headers = sign_webhook_payload(body_bytes, secret)

    # Verification (inbound)
    is_valid = verify_webhook_signature(body_bytes, secret, signature)
"""

import hashlib
import hmac
import secrets
from typing import Optional

SIGNATURE_HEADERS = ("x-webhook-signature", "x-signature")


def compute_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def sign_webhook_payload(payload: bytes, secret: str) -> dict[str, str]:
    """Headers a sender attaches to a signed webhook request."""
    return {
        "x-webhook-signature": compute_signature(payload, secret),
        "Content-Type": "application/json",
    }


def verify_webhook_signature(payload: bytes, secret: str, signature_header: Optional[str]) -> bool:
    """Verify a webhook signature.

    Args:
        payload: Raw request body bytes
        secret: Webhook signing secret
        signature_header: Value of the signature header

    Returns:
        True if the signature matches the body
    """
    if not signature_header:
        return False

    expected_sig = signature_header.strip()
    if expected_sig.startswith("sha256="):
        expected_sig = expected_sig[7:]

    # Constant-time comparison
    return hmac.compare_digest(compute_signature(payload, secret), expected_sig.lower())


def generate_webhook_secret() -> str:
    """Generate a cryptographically secure webhook signing secret."""
    return f"whsec_{secrets.token_urlsafe(32)}"
