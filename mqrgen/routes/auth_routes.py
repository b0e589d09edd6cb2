from functools import wraps

from flask import Blueprint, request

from ..errors import AuthError
from ..extensions import get_store
from ..records import Role
from ..schemas.account_schema import serialize_account
from ..services.account_service import find_by_api_key, generate_api_key, resolve_or_create_account
from ..utils.jwt_helper import decode_token
from ..utils.plan_limits import plan_limits
from ..utils.response import api_response

auth_bp = Blueprint("auth", __name__)


def _bearer_token():
    auth_header = request.headers.get("Authorization", "")
    if " " in auth_header:
        scheme, _, token = auth_header.partition(" ")
        return token.strip() if scheme.lower() == "bearer" else None
    return auth_header or None


def token_required(f):
    """Resolve the identity token to an account and pass it as the first argument."""

    @wraps(f)
    def decorated(*args, **kwargs):
        token = _bearer_token()
        if not token:
            raise AuthError("Token is missing!", code="TOKEN_MISSING")

        claims = decode_token(token)
        current_account = resolve_or_create_account(get_store().accounts, claims["sub"], claims)
        if not current_account.is_active:
            raise AuthError("Account is deactivated", code="ACCOUNT_INACTIVE", status=403)

        return f(current_account, *args, **kwargs)

    return decorated


def api_key_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        api_key = request.headers.get("X-API-Key")
        if not api_key:
            raise AuthError("API key is missing", code="API_KEY_MISSING")

        current_account = find_by_api_key(get_store().accounts, api_key)
        if current_account is None:
            raise AuthError("Invalid API key", code="INVALID_API_KEY")

        return f(current_account, *args, **kwargs)

    return decorated


def admin_required(*roles):
    """token_required plus a role check; defaults to admin or super_admin."""
    allowed = set(roles or (Role.ADMIN.value, Role.SUPER_ADMIN.value))

    def decorator(f):
        @wraps(f)
        @token_required
        def decorated(current_account, *args, **kwargs):
            if current_account.role not in allowed:
                raise AuthError("Insufficient permissions", code="FORBIDDEN", status=403, required_roles=sorted(allowed))
            return f(current_account, *args, **kwargs)

        return decorated

    return decorator


@auth_bp.route("/me", methods=["GET"])
@token_required
def me(current_account):
    return api_response(True, "Profile fetched", {
        **serialize_account(current_account),
        "limits": {key: plan_limits(current_account.subscription.plan)[key] for key in ("daily", "total")},
    })


@auth_bp.route("/api-key", methods=["POST"])
@token_required
def rotate_api_key(current_account):
    account = generate_api_key(get_store().accounts, current_account)
    return api_response(True, "API key generated", {"api_key": account.api_key})
