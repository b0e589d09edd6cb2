# mqrgen/utils/plan_checker.py
import logging
from datetime import datetime
from typing import Optional

from ..errors import EntitlementDenied, ValidationError
from ..records import Account, Entitlement, SubscriptionStatus
from ..services.subscription_service import effective_status
from ..services.usage_tracker import rollover_if_needed
from .plan_limits import DEFAULT_PLAN, is_known_plan, plan_limits, plan_rank

logger = logging.getLogger(__name__)


def _get_limits_for_account(account: Account) -> dict:
    return plan_limits(account.subscription.plan)


def _non_negative(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer", field=name, value=value)


def can_generate(accounts, account: Account, requested_count: int = 1, now: Optional[datetime] = None) -> Entitlement:
    """
    Daily QR quota check for ``requested_count`` more codes.

    Rolls the daily counters over first. A request of 0 reports current
    usage and is always allowed.
    """
    _non_negative("requested_count", requested_count)
    account = rollover_if_needed(accounts, account, now)

    limit = _get_limits_for_account(account)["daily"]
    current = account.usage.qr_generated_today
    allowed = current + requested_count <= limit
    if not allowed:
        logger.info(
            "QR limit reached for account %s: %d + %d > %d",
            account.id, current, requested_count, limit,
        )
    return Entitlement(
        allowed=allowed,
        reason=None if allowed else "LIMIT_EXCEEDED",
        message=None if allowed else "Daily QR generation limit exceeded",
        current=current,
        limit=limit,
        requested=requested_count,
        remaining=max(0, limit - current),
    )


def can_call_api(accounts, account: Account, max_calls_per_window: int, now: Optional[datetime] = None) -> Entitlement:
    """Per-key API call window, one window per UTC day."""
    _non_negative("max_calls_per_window", max_calls_per_window)
    account = rollover_if_needed(accounts, account, now)

    current = account.usage.api_calls_today
    allowed = current < max_calls_per_window
    return Entitlement(
        allowed=allowed,
        reason=None if allowed else "RATE_LIMIT_EXCEEDED",
        message=None if allowed else "API rate limit exceeded",
        current=current,
        limit=max_calls_per_window,
        remaining=max(0, max_calls_per_window - current),
    )


def require_active_subscription(
    account: Account,
    minimum_plan: str = DEFAULT_PLAN,
    now: Optional[datetime] = None,
) -> Entitlement:
    if not is_known_plan(minimum_plan):
        raise ValidationError("Unknown plan", plan=minimum_plan)

    current_plan = account.subscription.plan
    if plan_rank(current_plan) < plan_rank(minimum_plan):
        return Entitlement(
            allowed=False,
            reason="UPGRADE_REQUIRED",
            message="Subscription upgrade required",
            current_plan=current_plan,
            required_plan=minimum_plan,
        )

    status = effective_status(account.subscription, now)
    if status != SubscriptionStatus.ACTIVE.value:
        return Entitlement(
            allowed=False,
            reason="SUBSCRIPTION_INACTIVE",
            message="Subscription inactive",
            current_plan=current_plan,
            subscription_status=status,
        )
    return Entitlement(allowed=True, current_plan=current_plan)


def ensure_allowed(entitlement: Entitlement) -> Entitlement:
    if not entitlement.allowed:
        raise EntitlementDenied.from_entitlement(entitlement)
    return entitlement
