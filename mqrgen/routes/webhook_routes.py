import json

from flask import Blueprint, current_app, request

from ..errors import AuthError, ValidationError
from ..extensions import get_store
from ..services.webhook_service import process_webhook_event
from ..utils.response import api_response
from ..utils.security import verify_webhook_signature

webhook_bp = Blueprint("webhook_bp", __name__)


@webhook_bp.route("/webhook", methods=["POST"])
def razorpay_webhook():
    """
    Razorpay webhook endpoint, authenticated by signature only.

    Processed and ignored events both answer 200 so the gateway stops
    retrying. Failures propagate as an error status (409 while a
    transaction is mid-completion, 500 otherwise) so it retries.
    """
    payload_body = request.get_data()
    signature = request.headers.get("X-Razorpay-Signature")
    if not signature:
        raise ValidationError("Missing signature", code="SIGNATURE_MISSING")

    webhook_secret = current_app.config.get("RAZORPAY_WEBHOOK_SECRET")
    if not webhook_secret:
        current_app.logger.error("RAZORPAY_WEBHOOK_SECRET not configured")
        return api_response(False, "Webhook not configured", None, status=500)

    if not verify_webhook_signature(payload_body, signature, webhook_secret):
        raise AuthError("Invalid signature", code="INVALID_SIGNATURE")

    try:
        event_data = json.loads(payload_body)
    except json.JSONDecodeError:
        raise ValidationError("Invalid JSON")
    if not isinstance(event_data, dict):
        raise ValidationError("Invalid JSON")

    success, message = process_webhook_event(get_store(), event_data)
    return api_response(success, message, {"event": event_data.get("event")})
