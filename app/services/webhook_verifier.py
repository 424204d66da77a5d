"""
Shopify webhook signature verification.
"""
import base64
import hashlib
import hmac
from typing import Optional

import structlog

logger = structlog.get_logger()


def compute_webhook_signature(raw_body: bytes, secret: str) -> str:
    """Base64-encoded HMAC-SHA256 of the raw body, as Shopify sends it in X-Shopify-Hmac-Sha256."""
    return base64.b64encode(
        hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    ).decode("utf-8")


def verify_webhook_signature(
    raw_body: bytes, hmac_header: Optional[str], secret: Optional[str]
) -> bool:
    """
    Verify Shopify webhook signature.

    The HMAC must be computed over the exact bytes received. A body that was
    parsed and re-serialized will not verify.

    Args:
        raw_body: Raw request body bytes
        hmac_header: X-Shopify-Hmac-Sha256 header value
        secret: The tenant's webhook signing secret

    Returns:
        True if signature is valid, False otherwise (including any malformed input)
    """
    if not hmac_header or not secret:
        return False
    if not isinstance(raw_body, (bytes, bytearray)):
        return False

    try:
        calculated_hmac = compute_webhook_signature(bytes(raw_body), secret)
        # Compare using secure comparison to prevent timing attacks
        return hmac.compare_digest(
            calculated_hmac.encode("utf-8"), hmac_header.strip().encode("utf-8")
        )
    except (TypeError, ValueError, UnicodeError) as e:
        logger.warning("Malformed webhook signature input", error=str(e))
        return False
