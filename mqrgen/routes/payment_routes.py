from flask import Blueprint, request

from ..errors import ValidationError
from ..extensions import get_gateway, get_store
from ..schemas.coupon_schema import describe_discount
from ..schemas.payment_schema import (
    pagination,
    parse_pagination,
    serialize_order,
    serialize_payment,
    serialize_totals,
)
from ..services import coupon_service, payment_service
from ..utils.money import format_minor_units
from ..utils.plan_limits import CURRENCY, paid_plans, plan_catalog, plan_limits
from ..utils.response import api_response
from .auth_routes import token_required

payment_bp = Blueprint("payments", __name__)


@payment_bp.route("/plans", methods=["GET"])
def plans():
    catalog = plan_catalog()
    for plan in catalog:
        plan["price_display"] = format_minor_units(plan["price"], plan["currency"])
    return api_response(True, "Plans fetched", {"plans": catalog})


@payment_bp.route("/create-order", methods=["POST"])
@token_required
def create_order(current_account):
    data = request.get_json(silent=True) or {}
    payment, order = payment_service.create_order(
        get_store(),
        get_gateway(),
        current_account,
        data.get("plan"),
        coupon_code=data.get("coupon_code"),
        metadata={"user_agent": request.headers.get("User-Agent", ""), "ip_address": request.remote_addr or ""},
    )
    return api_response(True, "Order created", serialize_order(payment, order, get_gateway().key_id), status=201)


@payment_bp.route("/verify", methods=["POST"])
@token_required
def verify(current_account):
    data = request.get_json(silent=True) or {}
    account, payment = payment_service.verify_payment(
        get_store(),
        get_gateway(),
        current_account,
        data.get("payment_id"),
        data.get("order_id"),
        data.get("transaction_id"),
        data.get("signature"),
    )
    return api_response(True, "Payment verified and subscription activated", {
        "payment": serialize_payment(payment),
        "subscription": {
            "plan": account.subscription.plan,
            "status": account.subscription.status,
            "end_date": account.subscription.end_date.isoformat() if account.subscription.end_date else None,
        },
    })


@payment_bp.route("/validate-coupon", methods=["POST"])
@token_required
def validate_coupon(current_account):
    data = request.get_json(silent=True) or {}
    plan = data.get("plan")
    if plan not in paid_plans():
        raise ValidationError("Invalid plan selected", field="plan", plan=plan)

    price = plan_limits(plan)["price"]
    coupon, discount = coupon_service.evaluate_for_plan(
        get_store().coupons, data.get("coupon_code"), current_account.id, plan, price
    )
    final_amount = price - discount.discount_amount
    return api_response(True, "Coupon is valid", {
        "coupon": {
            "code": coupon.code,
            "name": coupon.name,
            "description": coupon.description,
            "discount": describe_discount(coupon),
        },
        "original_amount": price,
        "discount_amount": discount.discount_amount,
        "final_amount": final_amount,
        "currency": CURRENCY,
        "final_amount_display": format_minor_units(final_amount, CURRENCY),
    })


@payment_bp.route("/history", methods=["GET"])
@token_required
def history(current_account):
    page, limit = parse_pagination(request.args, default_limit=10)
    payments, total = payment_service.payment_history(
        get_store().payments, current_account, page=page, limit=limit, status=request.args.get("status")
    )
    return api_response(True, "Payment history fetched", {
        "payments": [serialize_payment(payment) for payment in payments],
        "pagination": pagination(page, limit, total),
    })


@payment_bp.route("/stats", methods=["GET"])
@token_required
def stats(current_account):
    summary = payment_service.payment_stats(get_store().payments, current_account)
    return api_response(True, "Payment stats fetched", {
        "overview": serialize_totals(summary["overview"], CURRENCY),
        "recent_payments": [serialize_payment(payment) for payment in summary["recent"]],
    })
