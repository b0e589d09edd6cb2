from flask import Blueprint

from ..extensions import get_store
from ..schemas.account_schema import serialize_subscription, serialize_usage
from ..services import subscription_service
from ..services.usage_tracker import rollover_if_needed
from ..utils.plan_limits import plan_limits
from ..utils.response import api_response
from .auth_routes import token_required

subscription_bp = Blueprint("subscription", __name__)


@subscription_bp.route("/status", methods=["GET"])
@token_required
def subscription_status(current_account):
    account = rollover_if_needed(get_store().accounts, current_account)
    limits = plan_limits(account.subscription.plan)
    return api_response(True, "Subscription status fetched", {
        "subscription": serialize_subscription(account.subscription),
        "usage": serialize_usage(account.usage, account.subscription.plan),
        "limits": {"daily": limits["daily"], "total": limits["total"]},
    })


@subscription_bp.route("/cancel", methods=["POST"])
@token_required
def cancel_subscription(current_account):
    account = subscription_service.cancel(get_store().accounts, current_account)
    return api_response(True, "Subscription cancelled successfully", {
        "subscription": serialize_subscription(account.subscription),
    })
