"""X-Hub-Signature-256 verification for webhook deliveries."""

import hashlib
import hmac

from loguru import logger

SIGNATURE_PREFIX = "sha256="


def verify_signature(raw_body: bytes, signature: str | None, app_secret: str) -> bool:
    """Check the HMAC-SHA256 of the raw body against the header value.

    Args:
        raw_body: Request body exactly as received
        signature: X-Hub-Signature-256 header ("sha256=<hex>")
        app_secret: WhatsApp app secret; empty disables verification

    Returns:
        True if the signature matches, or verification is disabled
    """
    if not app_secret:
        logger.warning("WHATSAPP_APP_SECRET not set, skipping signature validation")
        return True

    if not signature:
        return False

    received = signature.removeprefix(SIGNATURE_PREFIX)
    expected = hmac.new(app_secret.encode(), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(received.lower(), expected)
