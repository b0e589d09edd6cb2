"""
Coupon evaluation and redemption.

Discounts are computed in integer minor units. Percentage discounts are
floored, then capped by ``max_discount``, and never exceed the amount.
Redemption increments ``used_count`` and appends to the ledger in one
compare-and-swap write, so ``used_count`` always equals the ledger length.
"""

import dataclasses
import logging
import re
from datetime import datetime
from typing import List, Optional, Tuple

from ..errors import DuplicateRecordError, EntitlementDenied, NotFoundError, ValidationError
from ..records import Coupon, CouponType, Discount, Redemption, new_id
from ..utils.money import format_minor_units
from ..utils.plan_limits import CURRENCY, paid_plans
from ..utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{3,32}$")

# Fields an admin may change after creation; code and type are fixed.
UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "value",
    "max_discount",
    "min_amount",
    "applicable_plans",
    "usage_limit",
    "user_usage_limit",
    "valid_from",
    "valid_until",
    "is_active",
})


def normalize_code(code) -> str:
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("Coupon code is required", field="code")
    normalized = code.strip().upper()
    if not CODE_PATTERN.match(normalized):
        raise ValidationError(
            "Coupon code must be 3-32 characters of letters, digits, '-' or '_'",
            field="code",
        )
    return normalized


def can_user_use(coupon: Coupon, account_id: str, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return coupon.is_valid(now) and coupon.uses_by(account_id) < coupon.user_usage_limit


def find_valid_by_code(coupons, code, account_id: Optional[str] = None, now: Optional[datetime] = None) -> Optional[Coupon]:
    """Look up a coupon by code, case-insensitively, if it is currently usable."""
    now = now or utcnow()
    coupon = coupons.get_by_code(normalize_code(code))
    if coupon is None or not coupon.is_valid(now):
        return None
    if account_id is not None and coupon.uses_by(account_id) >= coupon.user_usage_limit:
        return None
    return coupon


def calculate_discount(coupon: Coupon, amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise ValidationError("amount must be a non-negative integer in minor units", field="amount")
    if coupon.type == CouponType.PERCENTAGE.value:
        discount = amount * coupon.value // 100
        if coupon.max_discount is not None:
            discount = min(discount, coupon.max_discount)
    else:
        discount = coupon.value
    return max(0, min(discount, amount))


def evaluate_for_plan(
    coupons,
    code,
    account_id: str,
    plan: str,
    amount: int,
    now: Optional[datetime] = None,
) -> Tuple[Coupon, Discount]:
    """Check a coupon against a checkout and price the discount without redeeming it."""
    now = now or utcnow()
    coupon = find_valid_by_code(coupons, code, account_id, now)
    if coupon is None:
        raise ValidationError("Invalid or expired coupon code", field="coupon_code")
    if plan not in coupon.applicable_plans:
        raise ValidationError("Coupon not applicable for this plan", field="coupon_code", plan=plan)
    if amount < coupon.min_amount:
        raise ValidationError(
            f"Minimum order amount of {format_minor_units(coupon.min_amount, CURRENCY)} required",
            field="coupon_code",
            min_amount=coupon.min_amount,
        )

    discount_amount = calculate_discount(coupon, amount)
    return coupon, Discount(
        coupon_code=coupon.code,
        discount_amount=discount_amount,
        discount_percentage=coupon.value if coupon.type == CouponType.PERCENTAGE.value else 0,
    )


def apply_usage(
    coupons,
    coupon: Coupon,
    account_id: str,
    payment_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Coupon:
    """Redeem ``coupon`` once for ``account_id``. Re-checks usability against the stored copy."""
    now = now or utcnow()

    def _redeem(current):
        if not can_user_use(current, account_id, now):
            raise EntitlementDenied(
                "Coupon cannot be used by this user",
                code="COUPON_NOT_USABLE",
                coupon_code=current.code,
            )
        return dataclasses.replace(
            current,
            used_count=current.used_count + 1,
            used_by=current.used_by + (Redemption(account_id=account_id, payment_id=payment_id, used_at=now),),
        )

    updated = coupons.update(coupon.id, _redeem)
    logger.info(
        "Coupon %s redeemed by account %s (%d/%s)",
        updated.code, account_id, updated.used_count, updated.usage_limit,
    )
    return updated


def _validate(coupon: Coupon) -> None:
    if not coupon.name or not coupon.name.strip():
        raise ValidationError("Coupon name is required", field="name")
    if coupon.type not in (CouponType.PERCENTAGE.value, CouponType.FIXED.value):
        raise ValidationError("Coupon type must be 'percentage' or 'fixed'", field="type")
    if coupon.value < 0:
        raise ValidationError("Coupon value cannot be negative", field="value")
    if coupon.type == CouponType.PERCENTAGE.value and coupon.value > 100:
        raise ValidationError("Percentage discount cannot exceed 100", field="value")
    if coupon.max_discount is not None and coupon.max_discount < 1:
        raise ValidationError("max_discount must be positive when set", field="max_discount")
    if coupon.min_amount < 0:
        raise ValidationError("min_amount cannot be negative", field="min_amount")
    if not coupon.applicable_plans:
        raise ValidationError("Coupon must apply to at least one plan", field="applicable_plans")
    unknown = sorted(set(coupon.applicable_plans) - set(paid_plans()))
    if unknown:
        raise ValidationError(f"Unknown or free plans: {', '.join(unknown)}", field="applicable_plans")
    if coupon.usage_limit is not None and coupon.usage_limit < coupon.used_count:
        raise ValidationError("usage_limit cannot be below the current used count", field="usage_limit")
    if coupon.user_usage_limit < 1:
        raise ValidationError("user_usage_limit must be at least 1", field="user_usage_limit")
    if as_utc(coupon.valid_until) <= as_utc(coupon.valid_from):
        raise ValidationError("valid_until must be after valid_from", field="valid_until")


def create_coupon(coupons, fields: dict, created_by: Optional[str] = None, now: Optional[datetime] = None) -> Coupon:
    now = now or utcnow()
    fields = dict(fields)
    code = normalize_code(fields.pop("code", None))
    for required in ("name", "type", "value", "valid_until"):
        if fields.get(required) is None:
            raise ValidationError(f"{required} is required", field=required)
    fields.setdefault("valid_from", now)
    if fields.get("applicable_plans") is None:
        fields.pop("applicable_plans", None)

    coupon = Coupon(id=new_id(), code=code, created_by=created_by, created_at=now, **fields)
    _validate(coupon)
    if as_utc(coupon.valid_until) <= as_utc(now):
        raise ValidationError("valid_until must be in the future", field="valid_until")

    try:
        coupon = coupons.add(coupon)
    except DuplicateRecordError:
        raise ValidationError("Coupon code already exists", field="code", value=code)
    logger.info("Coupon %s created by %s", coupon.code, created_by)
    return coupon


def update_coupon(coupons, coupon_id: str, changes: dict, now: Optional[datetime] = None) -> Coupon:
    now = now or utcnow()
    rejected = sorted(set(changes) - UPDATABLE_FIELDS)
    if rejected:
        raise ValidationError(f"Fields cannot be updated: {', '.join(rejected)}", fields=rejected)
    if "valid_until" in changes and as_utc(changes["valid_until"]) <= as_utc(now):
        raise ValidationError("valid_until must be in the future", field="valid_until")

    def _apply(current):
        updated = dataclasses.replace(current, **changes)
        _validate(updated)
        return updated

    coupon = coupons.update(coupon_id, _apply)
    logger.info("Coupon %s updated: %s", coupon.code, ", ".join(sorted(changes)))
    return coupon


def deactivate_coupon(coupons, coupon_id: str) -> Coupon:
    def _deactivate(current):
        if not current.is_active:
            return current
        return dataclasses.replace(current, is_active=False)

    coupon = coupons.update(coupon_id, _deactivate)
    logger.info("Coupon %s deactivated", coupon.code)
    return coupon


def get_coupon(coupons, coupon_id: str) -> Coupon:
    coupon = coupons.get(coupon_id)
    if coupon is None:
        raise NotFoundError("Coupon not found", id=coupon_id)
    return coupon


def list_coupons(coupons, page: int = 1, limit: int = 20, is_active: Optional[bool] = None) -> Tuple[List[Coupon], int]:
    return coupons.list(page=page, limit=limit, is_active=is_active)
