from flask import Blueprint, current_app

from ..extensions import get_store
from ..utils.response import api_response

core_bp = Blueprint("core", __name__)


@core_bp.route("/")
def root():
    return api_response(True, "QR generation API", {"version": current_app.config.get("API_VERSION", "1.0.0")})


@core_bp.route("/health")
def health():
    return {"status": "ok", "storage": get_store().backend}, 200
