from flask import Blueprint, request

from ..errors import ValidationError
from ..extensions import get_store
from ..records import Role
from ..schemas.account_schema import serialize_account
from ..schemas.coupon_schema import parse_coupon_payload, serialize_coupon
from ..schemas.payment_schema import pagination, parse_pagination, serialize_payment, serialize_totals
from ..services import account_service, coupon_service, payment_service
from ..utils.response import api_response
from ..utils.timeutils import parse_datetime, utcnow
from .auth_routes import admin_required

admin_bp = Blueprint("admin", __name__)


def _is_active_filter(value):
    if value is None:
        return None
    if value.lower() in ("true", "1"):
        return True
    if value.lower() in ("false", "0"):
        return False
    raise ValidationError("is_active must be true or false", field="is_active")


@admin_bp.route("/coupons", methods=["GET"])
@admin_required()
def list_coupons(current_account):
    page, limit = parse_pagination(request.args, default_limit=20)
    coupons, total = coupon_service.list_coupons(
        get_store().coupons, page=page, limit=limit, is_active=_is_active_filter(request.args.get("is_active"))
    )
    now = utcnow()
    return api_response(True, "Coupons fetched", {
        "coupons": [serialize_coupon(coupon, now) for coupon in coupons],
        "pagination": pagination(page, limit, total),
    })


@admin_bp.route("/coupons/<coupon_id>", methods=["GET"])
@admin_required()
def get_coupon(current_account, coupon_id):
    coupon = coupon_service.get_coupon(get_store().coupons, coupon_id)
    return api_response(True, "Coupon fetched", serialize_coupon(coupon, utcnow(), include_ledger=True))


@admin_bp.route("/coupons", methods=["POST"])
@admin_required(Role.SUPER_ADMIN.value)
def create_coupon(current_account):
    fields = parse_coupon_payload(request.get_json(silent=True))
    coupon = coupon_service.create_coupon(get_store().coupons, fields, created_by=current_account.id)
    return api_response(True, "Coupon created successfully", serialize_coupon(coupon), status=201)


@admin_bp.route("/coupons/<coupon_id>", methods=["PUT"])
@admin_required(Role.SUPER_ADMIN.value)
def update_coupon(current_account, coupon_id):
    data = request.get_json(silent=True)
    if isinstance(data, dict) and ("code" in data or "type" in data):
        raise ValidationError("Coupon code and type cannot be changed")
    changes = parse_coupon_payload(data, partial=True)
    if not changes:
        raise ValidationError("Nothing to update")
    coupon = coupon_service.update_coupon(get_store().coupons, coupon_id, changes)
    return api_response(True, "Coupon updated successfully", serialize_coupon(coupon))


@admin_bp.route("/coupons/<coupon_id>", methods=["DELETE"])
@admin_required(Role.SUPER_ADMIN.value)
def deactivate_coupon(current_account, coupon_id):
    coupon = coupon_service.deactivate_coupon(get_store().coupons, coupon_id)
    return api_response(True, "Coupon deactivated successfully", serialize_coupon(coupon))


@admin_bp.route("/users", methods=["GET"])
@admin_required()
def list_users(current_account):
    page, limit = parse_pagination(request.args, default_limit=20)
    accounts, total = account_service.list_accounts(
        get_store().accounts,
        page=page,
        limit=limit,
        search=request.args.get("search"),
        plan=request.args.get("plan"),
        status=request.args.get("status"),
    )
    now = utcnow()
    return api_response(True, "Users fetched", {
        "users": [serialize_account(account, now) for account in accounts],
        "pagination": pagination(page, limit, total),
    })


@admin_bp.route("/users/<account_id>", methods=["GET"])
@admin_required()
def get_user(current_account, account_id):
    store = get_store()
    account = account_service.get_account(store.accounts, account_id)
    summary = payment_service.payment_stats(store.payments, account, recent=10)
    return api_response(True, "User fetched", {
        "user": serialize_account(account, utcnow()),
        "recent_payments": [serialize_payment(payment) for payment in summary["recent"]],
        "payment_totals": serialize_totals(summary["overview"]),
    })


@admin_bp.route("/users/<account_id>/role", methods=["PUT"])
@admin_required(Role.SUPER_ADMIN.value)
def set_role(current_account, account_id):
    data = request.get_json(silent=True) or {}
    if account_id == current_account.id:
        raise ValidationError("You cannot change your own role")
    account = account_service.set_role(get_store().accounts, account_id, data.get("role"))
    return api_response(True, "Role updated", serialize_account(account))


@admin_bp.route("/users/<account_id>/subscription", methods=["PUT"])
@admin_required()
def override_subscription(current_account, account_id):
    data = request.get_json(silent=True) or {}
    end_date = None
    if data.get("end_date") is not None:
        try:
            end_date = parse_datetime(data["end_date"])
        except ValueError:
            raise ValidationError("end_date must be an ISO-8601 datetime", field="end_date")
    account = account_service.override_subscription(
        get_store().accounts,
        account_id,
        plan=data.get("plan"),
        status=data.get("status"),
        end_date=end_date,
    )
    return api_response(True, "Subscription updated", serialize_account(account))


@admin_bp.route("/payments", methods=["GET"])
@admin_required()
def list_payments(current_account):
    page, limit = parse_pagination(request.args, default_limit=20)
    payments, total = payment_service.list_payments(
        get_store().payments,
        page=page,
        limit=limit,
        status=request.args.get("status"),
        plan=request.args.get("plan"),
        account_id=request.args.get("account_id"),
    )
    return api_response(True, "Payments fetched", {
        "payments": [serialize_payment(payment) for payment in payments],
        "pagination": pagination(page, limit, total),
    })
