from ..errors import ValidationError
from ..utils.money import format_minor_units
from ..utils.timeutils import isoformat


def serialize_payment(payment) -> dict:
    return {
        "id": payment.id,
        "account_id": payment.account_id,
        "order_id": payment.order_id,
        "transaction_id": payment.transaction_id,
        "amount": payment.amount,
        "amount_display": format_minor_units(payment.amount, payment.currency),
        "currency": payment.currency,
        "plan": payment.plan,
        "status": payment.status,
        "coupon_code": payment.discount.coupon_code,
        "discount_amount": payment.discount.discount_amount,
        "discount_percentage": payment.discount.discount_percentage,
        "created_at": isoformat(payment.created_at),
        "completed_at": isoformat(payment.completed_at),
    }


def serialize_totals(totals: dict, currency: str = "INR") -> dict:
    """Payment totals with display strings next to each minor-unit amount."""
    data = dict(totals)
    for key in ("total_amount", "completed_amount", "average_amount"):
        data[key.replace("_amount", "_display")] = format_minor_units(totals[key], currency)
    return data


def serialize_order(payment, order: dict, key_id: str | None) -> dict:
    """What the checkout widget needs to open the gateway's payment form."""
    return {
        "payment_id": payment.id,
        "order_id": payment.order_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "plan": payment.plan,
        "key_id": key_id,
        "receipt": order.get("receipt"),
        "discount_amount": payment.discount.discount_amount,
        "coupon_code": payment.discount.coupon_code,
    }


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit if limit else 0,
    }


def parse_pagination(args, default_limit: int = 10, max_limit: int = 100) -> tuple[int, int]:
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    if page < 1 or not 1 <= limit <= max_limit:
        raise ValidationError(f"page must be >= 1 and limit between 1 and {max_limit}")
    return page, limit
