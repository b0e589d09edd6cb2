import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)


def sign_hmac(message, secret: str) -> str:
    """Hex HMAC-SHA256 of ``message`` (str or bytes) keyed with ``secret``."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_hmac_signature(message, signature: str | None, secret: str | None) -> bool:
    if not signature or not secret:
        return False
    return hmac.compare_digest(sign_hmac(message, secret), signature)


def verify_webhook_signature(payload_body, signature, secret):
    """
    Verify a Razorpay webhook signature

    Args:
        payload_body: Raw request body as bytes or string
        signature: X-Razorpay-Signature header value
        secret: Webhook secret from the Razorpay dashboard

    Returns:
        bool: True if signature is valid, False otherwise
    """
    valid = verify_hmac_signature(payload_body, signature, secret)
    if not valid:
        logger.warning("Webhook signature verification failed")
    return valid
