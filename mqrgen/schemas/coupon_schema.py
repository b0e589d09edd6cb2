from ..errors import ValidationError
from ..utils.money import format_minor_units
from ..utils.plan_limits import CURRENCY
from ..utils.timeutils import isoformat, parse_datetime

INT_FIELDS = ("value", "min_amount", "user_usage_limit")
OPTIONAL_INT_FIELDS = ("max_discount", "usage_limit")
TEXT_FIELDS = ("name", "description", "type")
DATE_FIELDS = ("valid_from", "valid_until")


def _int(data, key, optional=False):
    value = data[key]
    if value is None and optional:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer (minor units for amounts)", field=key, value=value)
    return value


def parse_coupon_payload(data: dict | None, partial: bool = False) -> dict:
    """
    Turn an admin JSON body into typed coupon fields.

    Amounts are integer minor units. Dates are ISO-8601. With ``partial``
    only the keys present are returned (for updates).
    """
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")

    fields = {}
    if not partial and "code" in data:
        fields["code"] = data["code"]
    for key in TEXT_FIELDS:
        if key in data:
            value = data[key]
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{key} must be a string", field=key)
            fields[key] = value.strip() if isinstance(value, str) else value
    if isinstance(fields.get("type"), str):
        fields["type"] = fields["type"].lower()
    for key in INT_FIELDS:
        if key in data:
            fields[key] = _int(data, key)
    for key in OPTIONAL_INT_FIELDS:
        if key in data:
            fields[key] = _int(data, key, optional=True)
    for key in DATE_FIELDS:
        if key in data and data[key] is not None:
            try:
                fields[key] = parse_datetime(data[key])
            except ValueError:
                raise ValidationError(f"{key} must be an ISO-8601 datetime", field=key)
    if "applicable_plans" in data:
        plans = data["applicable_plans"]
        if not isinstance(plans, list) or not all(isinstance(plan, str) for plan in plans):
            raise ValidationError("applicable_plans must be a list of plan ids", field="applicable_plans")
        fields["applicable_plans"] = frozenset(plan.lower() for plan in plans)
    if "is_active" in data:
        if not isinstance(data["is_active"], bool):
            raise ValidationError("is_active must be a boolean", field="is_active")
        fields["is_active"] = data["is_active"]
    return fields


def describe_discount(coupon) -> str:
    if coupon.type == "percentage":
        text = f"{coupon.value}% off"
        if coupon.max_discount is not None:
            text += f" (up to {format_minor_units(coupon.max_discount, CURRENCY)})"
        return text
    return f"{format_minor_units(coupon.value, CURRENCY)} off"


def serialize_coupon(coupon, now=None, include_ledger: bool = False) -> dict:
    data = {
        "id": coupon.id,
        "code": coupon.code,
        "name": coupon.name,
        "description": coupon.description,
        "type": coupon.type,
        "value": coupon.value,
        "discount": describe_discount(coupon),
        "max_discount": coupon.max_discount,
        "min_amount": coupon.min_amount,
        "applicable_plans": sorted(coupon.applicable_plans),
        "usage_limit": coupon.usage_limit,
        "used_count": coupon.used_count,
        "remaining_usage": coupon.remaining_usage,
        "user_usage_limit": coupon.user_usage_limit,
        "valid_from": isoformat(coupon.valid_from),
        "valid_until": isoformat(coupon.valid_until),
        "is_active": coupon.is_active,
        "created_by": coupon.created_by,
        "created_at": isoformat(coupon.created_at),
    }
    if now is not None:
        data["is_valid"] = coupon.is_valid(now)
    if include_ledger:
        data["used_by"] = [
            {"account_id": entry.account_id, "payment_id": entry.payment_id, "used_at": isoformat(entry.used_at)}
            for entry in coupon.used_by
        ]
    return data
