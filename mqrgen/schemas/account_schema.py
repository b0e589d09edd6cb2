from ..services.subscription_service import effective_status
from ..utils.plan_limits import plan_limits
from ..utils.timeutils import isoformat


def mask_api_key(api_key: str | None) -> str | None:
    if not api_key:
        return None
    return f"{api_key[:8]}...{api_key[-4:]}"


def serialize_subscription(subscription, now=None) -> dict:
    return {
        "plan": subscription.plan,
        "status": effective_status(subscription, now),
        "start_date": isoformat(subscription.start_date),
        "end_date": isoformat(subscription.end_date),
    }


def serialize_usage(usage, plan: str) -> dict:
    limits = plan_limits(plan)
    return {
        "qr_generated_today": usage.qr_generated_today,
        "qr_generated_total": usage.qr_generated_total,
        "api_calls_today": usage.api_calls_today,
        "api_calls_total": usage.api_calls_total,
        "last_reset_date": isoformat(usage.last_reset_date),
        "daily_limit": limits["daily"],
        "remaining_today": max(0, limits["daily"] - usage.qr_generated_today),
    }


def serialize_account(account, now=None, include_api_key: bool = False) -> dict:
    return {
        "id": account.id,
        "email": account.email,
        "first_name": account.first_name,
        "last_name": account.last_name,
        "full_name": account.full_name,
        "avatar": account.avatar,
        "role": account.role,
        "subscription": serialize_subscription(account.subscription, now),
        "usage": serialize_usage(account.usage, account.subscription.plan),
        "api_key": account.api_key if include_api_key else mask_api_key(account.api_key),
        "is_active": account.is_active,
        "last_login": isoformat(account.last_login),
        "created_at": isoformat(account.created_at),
    }
