"""
Checkout: orders, payment verification and completion.

Completion is idempotent per gateway transaction id. The first caller
claims ``txn:<transaction id>`` in the event ledger. A later caller (a
webhook retry, or the client verify racing the webhook) sees the claim and
returns the settled state, or gets a ConflictError while the first caller
is still working. A failure after the claim releases it, so the gateway's
next retry can finish the job.

An order can take several attempts: a declined attempt marks the payment
failed, and a later capture on the same order still completes it.
"""

import dataclasses
import logging
from datetime import datetime
from typing import Optional

from ..errors import AuthError, ConflictError, EntitlementDenied, NotFoundError, ValidationError
from ..records import Account, Payment, PaymentStatus, new_id
from ..utils.plan_limits import BILLING_PERIOD_DAYS, CURRENCY, paid_plans, plan_limits
from ..utils.timeutils import as_utc, utcnow
from . import coupon_service, subscription_service

logger = logging.getLogger(__name__)

# A declined attempt leaves the order open for another try
COMPLETABLE = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)


def transaction_key(transaction_id: str) -> str:
    return f"txn:{transaction_id}"


def _owned_payment(payments, payment_id: str, account: Account) -> Payment:
    payment = payments.get(payment_id)
    if payment is None or payment.account_id != account.id:
        raise NotFoundError("Payment not found", id=payment_id)
    return payment


def create_order(
    store,
    gateway,
    account: Account,
    plan: str,
    coupon_code: Optional[str] = None,
    metadata: Optional[dict] = None,
    now: Optional[datetime] = None,
):
    """Price ``plan`` (after any coupon), open a gateway order and record a pending payment."""
    now = now or utcnow()
    if plan not in paid_plans():
        raise ValidationError("Invalid plan selected", field="plan", plan=plan)

    price = plan_limits(plan)["price"]
    discount = None
    if coupon_code:
        _, discount = coupon_service.evaluate_for_plan(store.coupons, coupon_code, account.id, plan, price, now)
    amount = price - (discount.discount_amount if discount else 0)

    receipt = f"rcpt_{account.id[:8]}_{int(now.timestamp())}"
    order = gateway.create_order(
        amount=amount,
        currency=CURRENCY,
        receipt=receipt,
        notes={"account_id": account.id, "plan": plan, "coupon_code": discount.coupon_code if discount else ""},
    )

    payment = Payment(
        id=new_id(),
        account_id=account.id,
        order_id=order["id"],
        amount=amount,
        currency=CURRENCY,
        plan=plan,
        metadata=dict(metadata or {}, receipt=receipt, original_amount=price),
        created_at=now,
        **({"discount": discount} if discount else {}),
    )
    payment = store.payments.add(payment)
    logger.info(
        "Order %s created for account %s: %s at %d (discount %d)",
        payment.order_id, account.id, plan, amount, payment.discount.discount_amount,
    )
    return payment, order


def verify_payment(
    store,
    gateway,
    account: Account,
    payment_id: str,
    order_id: str,
    transaction_id: str,
    signature: str,
    now: Optional[datetime] = None,
):
    """Client-side confirmation after checkout. Verifies the signature then completes."""
    if not order_id or not transaction_id or not signature:
        raise ValidationError("order_id, transaction_id and signature are required")
    payment = _owned_payment(store.payments, payment_id, account)
    if payment.order_id != order_id:
        raise ValidationError("Order does not match payment", field="order_id")
    if not gateway.verify_payment_signature(order_id, transaction_id, signature):
        logger.warning("Invalid payment signature for order %s", order_id)
        raise AuthError("Invalid payment signature", code="INVALID_SIGNATURE", status=400)
    return complete_payment(store, payment, transaction_id, now)


def complete_payment(store, payment: Payment, transaction_id: str, now: Optional[datetime] = None):
    """
    Mark ``payment`` completed, redeem its coupon and activate the plan.

    Returns ``(account, payment)``. A transaction id that was already
    processed is a no-op that returns the current state; one that another
    caller is still completing raises ConflictError (409).
    """
    now = now or utcnow()
    key = transaction_key(transaction_id)
    if not store.events.record_once(
        key, "payment.completed", now, payment_id=payment.id, account_id=payment.account_id
    ):
        account, current = store.accounts.get(payment.account_id), store.payments.get(payment.id)
        if not _settled(account, current, transaction_id):
            logger.info("Transaction %s is still being processed", transaction_id)
            raise ConflictError(
                "Payment is still being processed, please retry",
                code="PAYMENT_PROCESSING",
                order_id=payment.order_id,
            )
        logger.info("Transaction %s already processed, skipping", transaction_id)
        return account, current

    try:
        return _complete(store, payment, transaction_id, now)
    except Exception:
        store.events.forget(key)
        raise


def _settled(account, payment, transaction_id) -> bool:
    """Completed under ``transaction_id`` and the plan activation has landed."""
    if account is None or payment is None:
        return False
    if payment.transaction_id != transaction_id:
        return False
    if payment.status == PaymentStatus.REFUNDED.value:
        return True
    if payment.status != PaymentStatus.COMPLETED.value:
        return False
    start = account.subscription.start_date
    return start is not None and as_utc(start) >= as_utc(payment.completed_at)


def _complete(store, payment, transaction_id, now):
    def _mark_completed(current):
        if current.status == PaymentStatus.COMPLETED.value and current.transaction_id == transaction_id:
            return current
        if current.status not in COMPLETABLE:
            raise ValidationError(f"Payment is {current.status} and cannot be completed", id=current.id)
        return dataclasses.replace(
            current,
            status=PaymentStatus.COMPLETED.value,
            transaction_id=transaction_id,
            completed_at=now,
        )

    payment = store.payments.update(payment.id, _mark_completed)

    if payment.discount.coupon_code:
        _redeem_coupon(store, payment, now)

    account = store.accounts.get(payment.account_id)
    if account is None:
        raise NotFoundError("User not found", id=payment.account_id)
    account = subscription_service.activate(store.accounts, account, payment.plan, BILLING_PERIOD_DAYS, now)
    logger.info(
        "Payment %s completed (%s), account %s now on %s",
        payment.order_id, transaction_id, account.id, payment.plan,
    )
    return account, payment


def _redeem_coupon(store, payment, now):
    coupon = store.coupons.get_by_code(payment.discount.coupon_code)
    if coupon is None:
        logger.error("Coupon %s on payment %s no longer exists", payment.discount.coupon_code, payment.id)
        return
    if any(entry.payment_id == payment.id for entry in coupon.used_by):
        return
    try:
        coupon_service.apply_usage(store.coupons, coupon, payment.account_id, payment.id, now)
    except EntitlementDenied as exc:
        # The customer has paid the discounted price; activation goes ahead.
        logger.error(
            "Coupon %s could not be redeemed for paid order %s: %s",
            coupon.code, payment.order_id, exc.message,
        )


def fail_payment(
    store, payment: Payment, reason: Optional[str] = None, transaction_id: Optional[str] = None
) -> Payment:
    """
    Record a declined attempt. The order stays completable: a later
    capture on it still goes through. Completed and refunded payments
    are left alone.
    """

    def _mark_failed(current):
        if current.status not in COMPLETABLE:
            return current
        attempts = list(current.metadata.get("failed_attempts", []))
        if transaction_id and transaction_id in attempts:
            return current
        if transaction_id:
            attempts.append(transaction_id)
        metadata = dict(current.metadata, failed_attempts=attempts)
        if reason:
            metadata["failure_reason"] = reason
        return dataclasses.replace(current, status=PaymentStatus.FAILED.value, metadata=metadata)

    updated = store.payments.update(payment.id, _mark_failed)
    logger.info("Payment %s marked %s", updated.order_id, updated.status)
    return updated


def refund_payment(store, payment: Payment, now: Optional[datetime] = None) -> Payment:
    """Mark a completed payment refunded and cancel the subscription it bought."""
    now = now or utcnow()

    def _mark_refunded(current):
        if current.status == PaymentStatus.REFUNDED.value:
            return current
        if current.status != PaymentStatus.COMPLETED.value:
            raise ValidationError(f"Payment is {current.status} and cannot be refunded", id=current.id)
        return dataclasses.replace(current, status=PaymentStatus.REFUNDED.value)

    updated = store.payments.update(payment.id, _mark_refunded)
    account = store.accounts.get(updated.account_id)
    if account is not None and account.subscription.plan == updated.plan:
        try:
            subscription_service.cancel(store.accounts, account, now)
        except EntitlementDenied:
            logger.info("Refunded payment %s: subscription for %s was not active", updated.order_id, account.id)
    return updated


def _check_status(status):
    if status is not None and status not in {member.value for member in PaymentStatus}:
        raise ValidationError("Invalid payment status", field="status", value=status)


def payment_history(payments, account: Account, page: int = 1, limit: int = 10, status: Optional[str] = None):
    _check_status(status)
    return payments.list_for_account(account.id, page=page, limit=limit, status=status)


def list_payments(
    payments,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    plan: Optional[str] = None,
    account_id: Optional[str] = None,
):
    """Admin view over every account's payments, newest first."""
    _check_status(status)
    if plan is not None and plan not in paid_plans():
        raise ValidationError("Invalid plan", field="plan", value=plan)
    return payments.list(page=page, limit=limit, status=status, plan=plan, account_id=account_id)


def payment_stats(payments, account: Account, recent: int = 5) -> dict:
    """Totals over the account's payments plus its most recent ones."""
    latest, _ = payments.list_for_account(account.id, page=1, limit=recent)
    return {"overview": payments.totals(account.id), "recent": latest}
