from flask import Blueprint, current_app, request

from ..extensions import get_renderer, get_store
from ..schemas.account_schema import serialize_subscription, serialize_usage
from ..services.qr_service import generate_bulk, generate_qr
from ..services.usage_tracker import increment_api_calls
from ..utils.plan_checker import can_call_api, ensure_allowed, require_active_subscription
from ..utils.response import api_response
from .auth_routes import api_key_required
from .qr_routes import serialize_bulk, serialize_qr

api_bp = Blueprint("api", __name__)


@api_bp.route("/qr/generate", methods=["POST"])
@api_key_required
def api_generate(current_account):
    accounts = get_store().accounts
    ensure_allowed(require_active_subscription(current_account))
    ensure_allowed(can_call_api(accounts, current_account, current_app.config["API_CALLS_PER_DAY"]))

    data = request.get_json(silent=True) or {}
    qr, account = generate_qr(
        accounts,
        get_renderer(),
        current_account,
        data.get("content"),
        title=data.get("title"),
        qr_type=data.get("type"),
        styling=data.get("styling"),
    )
    account = increment_api_calls(accounts, account)
    return api_response(True, "QR code generated successfully", {
        "qr_code": serialize_qr(qr),
        "usage": serialize_usage(account.usage, account.subscription.plan),
    }, status=201)


@api_bp.route("/qr/bulk-generate", methods=["POST"])
@api_key_required
def api_bulk_generate(current_account):
    accounts = get_store().accounts
    ensure_allowed(require_active_subscription(current_account))
    ensure_allowed(can_call_api(accounts, current_account, current_app.config["API_BULK_CALLS_PER_DAY"]))

    data = request.get_json(silent=True) or {}
    result = generate_bulk(accounts, get_renderer(), current_account, data.get("data"), styling=data.get("styling"))
    # One API call per batch, however many rows it carries
    account = increment_api_calls(accounts, result.account)
    return api_response(
        True, f"Generated {result.generated} QR codes", serialize_bulk(result, account), status=201
    )


@api_bp.route("/stats", methods=["GET"])
@api_key_required
def api_stats(current_account):
    accounts = get_store().accounts
    ensure_allowed(require_active_subscription(current_account))
    ensure_allowed(can_call_api(accounts, current_account, current_app.config["API_STATS_CALLS_PER_DAY"]))

    account = increment_api_calls(accounts, current_account)
    return api_response(True, "Stats fetched", {
        "subscription": serialize_subscription(account.subscription),
        "usage": serialize_usage(account.usage, account.subscription.plan),
    })
