import datetime

import jwt
from flask import current_app

from ..errors import AuthError


def encode_token(subject: str, claims: dict | None = None, hours: int = 1) -> str:
    """Mint an identity token the way the identity provider does (used by tests and local dev)."""
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        **(claims or {}),
        "sub": subject,
        "iat": now,
        "exp": now + datetime.timedelta(hours=hours),
    }
    if current_app.config.get("IDENTITY_ISSUER"):
        payload["iss"] = current_app.config["IDENTITY_ISSUER"]
    return jwt.encode(payload, current_app.config["IDENTITY_SECRET_KEY"], algorithm="HS256")


def decode_token(token: str) -> dict:
    issuer = current_app.config.get("IDENTITY_ISSUER")
    try:
        return jwt.decode(
            token,
            current_app.config["IDENTITY_SECRET_KEY"],
            algorithms=["HS256"],
            issuer=issuer,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired", code="TOKEN_EXPIRED")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token", code="INVALID_TOKEN")
