from flask import Blueprint, current_app, request, url_for

from ..extensions import get_renderer, get_store
from ..schemas.account_schema import serialize_usage
from ..services.qr_service import generate_bulk, generate_qr
from ..utils.plan_checker import can_generate
from ..utils.response import api_response
from ..utils.timeutils import isoformat
from .auth_routes import token_required

qr_bp = Blueprint("qr", __name__)


def image_url(path):
    """Absolute URL for a static-relative image path like ``qrcodes/qr_<hex>.png``."""
    if not path:
        return None
    base_url = current_app.config.get("BASE_URL", "").rstrip("/")
    return f"{base_url}{url_for('static', filename=path)}"


def serialize_qr(qr) -> dict:
    return {
        "title": qr.title,
        "content": qr.content,
        "type": qr.type,
        "image_url": image_url(qr.image),
        "created_at": isoformat(qr.created_at),
    }


def serialize_bulk(result, account=None) -> dict:
    account = account or result.account
    return {
        "results": [serialize_qr(qr) for qr in result.results],
        "errors": result.errors,
        "summary": {
            "total": result.requested,
            "successful": result.generated,
            "failed": len(result.errors),
        },
        "usage": serialize_usage(account.usage, account.subscription.plan),
    }


@qr_bp.route("/generate", methods=["POST"])
@token_required
def generate(current_account):
    data = request.get_json(silent=True) or {}
    qr, account = generate_qr(
        get_store().accounts,
        get_renderer(),
        current_account,
        data.get("content"),
        title=data.get("title"),
        qr_type=data.get("type"),
        styling=data.get("styling"),
    )
    return api_response(True, "QR code generated successfully", {
        "qr_code": serialize_qr(qr),
        "usage": serialize_usage(account.usage, account.subscription.plan),
    }, status=201)


@qr_bp.route("/bulk-generate", methods=["POST"])
@token_required
def bulk_generate(current_account):
    data = request.get_json(silent=True) or {}
    result = generate_bulk(
        get_store().accounts,
        get_renderer(),
        current_account,
        data.get("data"),
        styling=data.get("styling"),
    )
    return api_response(True, f"Generated {result.generated} QR codes", serialize_bulk(result), status=201)


@qr_bp.route("/usage", methods=["GET"])
@token_required
def usage(current_account):
    entitlement = can_generate(get_store().accounts, current_account, 0)
    return api_response(True, "Usage fetched", {
        "plan": current_account.subscription.plan,
        "today": entitlement.current,
        "limit": entitlement.limit,
        "remaining": entitlement.remaining,
        "total": current_account.usage.qr_generated_total,
    })
