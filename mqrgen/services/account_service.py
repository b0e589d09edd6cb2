import dataclasses
import logging
import secrets
from datetime import datetime
from typing import Optional

from ..errors import ConflictError, DuplicateRecordError, NotFoundError, ValidationError
from ..records import Account, Role, Subscription, SubscriptionStatus, Usage, new_id
from ..utils.plan_limits import DEFAULT_PLAN, is_known_plan
from ..utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "mqr_"


def get_account(accounts, account_id: str) -> Account:
    account = accounts.get(account_id)
    if account is None:
        raise NotFoundError("User not found", id=account_id)
    return account


def _new_account(external_id: str, claims: dict, now: datetime) -> Account:
    return Account(
        id=new_id(),
        external_id=external_id,
        email=(claims.get("email") or "").strip().lower(),
        first_name=claims.get("first_name") or claims.get("given_name") or "User",
        last_name=claims.get("last_name") or claims.get("family_name") or "",
        avatar=claims.get("picture") or claims.get("avatar"),
        subscription=Subscription(plan=DEFAULT_PLAN, status=SubscriptionStatus.ACTIVE.value, start_date=now),
        usage=Usage(last_reset_date=now),
        last_login=now,
        created_at=now,
    )


def resolve_or_create_account(accounts, external_id: str, claims: Optional[dict] = None, now: Optional[datetime] = None) -> Account:
    """Map an identity-provider subject to a local account, creating it on first sight."""
    if not external_id:
        raise ValidationError("Token subject is missing")
    claims = claims or {}
    now = now or utcnow()

    account = accounts.get_by_external_id(external_id)
    if account is None:
        try:
            account = accounts.add(_new_account(external_id, claims, now))
            logger.info("Created account %s for subject %s", account.id, external_id)
            return account
        except DuplicateRecordError:
            # Lost a first-login race; the other request created it.
            account = accounts.get_by_external_id(external_id)
            if account is None:
                raise ConflictError("Account creation raced, please retry")

    return accounts.update(account.id, lambda current: dataclasses.replace(current, last_login=now))


def generate_api_key(accounts, account: Account) -> Account:
    api_key = API_KEY_PREFIX + secrets.token_hex(32)
    updated = accounts.update(account.id, lambda current: dataclasses.replace(current, api_key=api_key))
    logger.info("API key rotated for account %s", account.id)
    return updated


def find_by_api_key(accounts, api_key: str) -> Optional[Account]:
    if not api_key or not api_key.startswith(API_KEY_PREFIX):
        return None
    account = accounts.get_by_api_key(api_key)
    if account is None or not account.is_active:
        return None
    return account


def set_role(accounts, account_id: str, role: str) -> Account:
    if role not in {member.value for member in Role}:
        raise ValidationError("Invalid role", field="role", value=role)
    updated = accounts.update(account_id, lambda current: dataclasses.replace(current, role=role))
    logger.info("Account %s role set to %s", account_id, role)
    return updated


def override_subscription(
    accounts,
    account_id: str,
    plan: Optional[str] = None,
    status: Optional[str] = None,
    end_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Account:
    """Admin correction of plan, status or end date. Omitted fields are left alone."""
    if plan is None and status is None and end_date is None:
        raise ValidationError("Nothing to update")
    if plan is not None and not is_known_plan(plan):
        raise ValidationError("Invalid plan", field="plan", value=plan)
    if status is not None and status not in {member.value for member in SubscriptionStatus}:
        raise ValidationError("Invalid subscription status", field="status", value=status)
    now = now or utcnow()

    def _override(current):
        changes = {}
        if plan is not None:
            changes["plan"] = plan
            if plan != current.subscription.plan:
                changes["start_date"] = now
        if status is not None:
            changes["status"] = status
        if end_date is not None:
            changes["end_date"] = as_utc(end_date)
        return dataclasses.replace(current, subscription=dataclasses.replace(current.subscription, **changes))

    updated = accounts.update(account_id, _override)
    logger.info(
        "Subscription override for %s: %s/%s",
        account_id, updated.subscription.plan, updated.subscription.status,
    )
    return updated


def list_accounts(
    accounts,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    plan: Optional[str] = None,
    status: Optional[str] = None,
):
    if plan is not None and not is_known_plan(plan):
        raise ValidationError("Invalid plan", field="plan", value=plan)
    if status is not None and status not in {member.value for member in SubscriptionStatus}:
        raise ValidationError("Invalid subscription status", field="status", value=status)
    search = (search or "").strip() or None
    return accounts.list(page=page, limit=limit, search=search, plan=plan, status=status)
