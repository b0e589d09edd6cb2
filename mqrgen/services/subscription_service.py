import dataclasses
import logging
from datetime import datetime, timedelta
from typing import Optional

from ..errors import EntitlementDenied, ValidationError
from ..records import Account, Subscription, SubscriptionStatus
from ..utils.plan_limits import BILLING_PERIOD_DAYS, is_known_plan
from ..utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


def effective_status(subscription: Subscription, now: Optional[datetime] = None) -> str:
    """Stored status, except an active subscription past its end date reads as expired."""
    now = now or utcnow()
    if (
        subscription.status == SubscriptionStatus.ACTIVE.value
        and subscription.end_date is not None
        and as_utc(subscription.end_date) < as_utc(now)
    ):
        return SubscriptionStatus.EXPIRED.value
    return subscription.status


def activate(
    accounts,
    account: Account,
    plan: str,
    duration_days: int = BILLING_PERIOD_DAYS,
    now: Optional[datetime] = None,
) -> Account:
    if not is_known_plan(plan):
        raise ValidationError("Invalid plan selected", plan=plan)
    if isinstance(duration_days, bool) or not isinstance(duration_days, int) or duration_days < 1:
        raise ValidationError("duration_days must be a positive integer", duration_days=duration_days)
    now = now or utcnow()
    subscription = Subscription(
        plan=plan,
        status=SubscriptionStatus.ACTIVE.value,
        start_date=now,
        end_date=now + timedelta(days=duration_days),
    )
    updated = accounts.update(account.id, lambda current: dataclasses.replace(current, subscription=subscription))
    logger.info("Activated %s for account %s until %s", plan, account.id, subscription.end_date.isoformat())
    return updated


def cancel(accounts, account: Account, now: Optional[datetime] = None) -> Account:
    """Cancel an active subscription: status becomes cancelled and it ends now. The plan is kept."""
    now = now or utcnow()

    def _cancel(current):
        status = effective_status(current.subscription, now)
        if status != SubscriptionStatus.ACTIVE.value:
            raise EntitlementDenied(
                "No active subscription to cancel",
                code="NO_ACTIVE_SUBSCRIPTION",
                subscription_status=status,
            )
        return dataclasses.replace(
            current,
            subscription=dataclasses.replace(
                current.subscription, status=SubscriptionStatus.CANCELLED.value, end_date=now
            ),
        )

    updated = accounts.update(account.id, _cancel)
    logger.info("Cancelled %s subscription for account %s", updated.subscription.plan, account.id)
    return updated
