"""Webhook signature verification — constant-time HMAC.

Security contract:
- All verifications use hmac.compare_digest() (constant-time, no timing attacks)
- Verification failure -> 401 immediately, no payload processing
- Missing secret -> verification always fails (fail-closed)
- Missing signature header -> False, never an exception
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-shopify-hmac-sha256"
TOPIC_HEADER = "x-shopify-topic"
SHOP_HEADER = "x-shopify-shop-domain"


def compute_signature(body: bytes, secret: str) -> str:
    """Base64-encoded HMAC-SHA256 of the raw body, as Shopify sends it."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_shopify(body: bytes, signature_header: str | None, secret: str) -> bool:
    """Verify a Shopify webhook HMAC-SHA256 signature.

    Args:
        body: Raw request body bytes (exactly as received)
        signature_header: Value of X-Shopify-Hmac-SHA256 header
        secret: Shared webhook secret

    Returns:
        True if signature is valid
    """
    if not secret:
        logger.warning("Webhook secret not set, rejecting webhook")
        return False
    if not signature_header:
        return False

    computed = compute_signature(body, secret)
    return hmac.compare_digest(
        computed.encode("utf-8"), signature_header.strip().encode("utf-8")
    )


def verify_webhook(body: bytes, headers: dict[str, str], secret: str) -> bool:
    """Verify webhook signature from a lowercase header mapping."""
    return verify_shopify(body, headers.get(SIGNATURE_HEADER), secret)
