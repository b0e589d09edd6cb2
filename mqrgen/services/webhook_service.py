import logging
from datetime import datetime
from typing import Optional, Tuple

from ..errors import EntitlementDenied, ValidationError
from ..utils.timeutils import utcnow
from . import payment_service, subscription_service

logger = logging.getLogger(__name__)


def event_key(event_data: dict) -> str:
    """
    Idempotency key for a gateway event.

    Razorpay sends a unique ``id`` per event; older payloads without one
    fall back to event type plus entity id plus created_at.
    """
    if event_data.get("id"):
        return f"evt:{event_data['id']}"
    event_type = event_data.get("event", "unknown")
    entity_id = _entity(event_data, "payment").get("id") or _entity(event_data, "refund").get("id")
    return f"evt:{event_type}:{entity_id}:{event_data.get('created_at')}"


def _entity(event_data: dict, name: str) -> dict:
    return ((event_data.get("payload") or {}).get(name) or {}).get("entity") or {}


def process_payment_captured(store, event_data, now) -> Tuple[bool, str]:
    """payment.captured"""
    entity = _entity(event_data, "payment")
    order_id, transaction_id = entity.get("order_id"), entity.get("id")
    if not order_id or not transaction_id:
        return False, "Payment entity missing order_id or id"

    payment = store.payments.get_by_order_id(order_id)
    if payment is None:
        logger.warning("payment.captured for unknown order %s", order_id)
        return False, f"Unknown order {order_id}"
    if entity.get("amount") is not None and entity["amount"] != payment.amount:
        logger.error(
            "Captured amount %s does not match order %s amount %d",
            entity["amount"], order_id, payment.amount,
        )
        return False, "Amount mismatch"

    payment_service.complete_payment(store, payment, transaction_id, now)
    return True, f"Payment {transaction_id} captured"


def process_payment_failed(store, event_data, now) -> Tuple[bool, str]:
    """payment.failed"""
    entity = _entity(event_data, "payment")
    payment = store.payments.get_by_order_id(entity.get("order_id"))
    if payment is None:
        return False, f"Unknown order {entity.get('order_id')}"
    payment_service.fail_payment(store, payment, entity.get("error_description"), entity.get("id"))
    return True, f"Payment for order {payment.order_id} marked failed"


def process_refund_processed(store, event_data, now) -> Tuple[bool, str]:
    """refund.processed"""
    refund = _entity(event_data, "refund")
    transaction_id = refund.get("payment_id") or _entity(event_data, "payment").get("id")
    payment = store.payments.get_by_transaction_id(transaction_id)
    if payment is None:
        return False, f"Unknown transaction {transaction_id}"
    try:
        payment_service.refund_payment(store, payment, now)
    except ValidationError as exc:
        return False, exc.message
    return True, f"Payment {transaction_id} refunded"


def process_subscription_cancelled(store, event_data, now) -> Tuple[bool, str]:
    """subscription.cancelled"""
    notes = _entity(event_data, "subscription").get("notes") or {}
    account_id = notes.get("account_id") if isinstance(notes, dict) else None
    account = store.accounts.get(account_id) if account_id else None
    if account is None:
        return False, "Subscription event without a known account"
    try:
        subscription_service.cancel(store.accounts, account, now)
    except EntitlementDenied:
        return True, "Subscription already inactive"
    return True, f"Subscription cancelled for {account.id}"


HANDLERS = {
    "payment.captured": process_payment_captured,
    "payment.failed": process_payment_failed,
    "refund.processed": process_refund_processed,
    "subscription.cancelled": process_subscription_cancelled,
}


def process_webhook_event(store, event_data: dict, now: Optional[datetime] = None) -> Tuple[bool, str]:
    """
    Main webhook processing function

    Args:
        store: storage backend
        event_data: Parsed JSON webhook payload

    Returns:
        tuple: (success: bool, message: str)
    """
    now = now or utcnow()
    event_type = event_data.get("event", "unknown")
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.debug("Event type %s ignored", event_type)
        return True, f"Event {event_type} ignored"

    key = event_key(event_data)
    if not store.events.record_once(key, event_type, now, payment_id=_entity(event_data, "payment").get("id")):
        return True, "Duplicate event, already processed"

    try:
        success, message = handler(store, event_data, now)
    except Exception:
        store.events.forget(key)
        logger.exception("Webhook %s (%s) failed", key, event_type)
        raise

    if not success:
        # Not retryable as-is, but a corrected resend should be processed.
        store.events.forget(key)
        logger.warning("Webhook %s (%s) not applied: %s", key, event_type, message)
    else:
        logger.info("Webhook %s (%s): %s", key, event_type, message)
    return success, message
