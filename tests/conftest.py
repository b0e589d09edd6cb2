"""
Pytest Configuration and Shared Fixtures

Stores are in-memory unless a test asks for the SQL backend explicitly.
Service tests pass a fixed ``now`` so daily rollover is deterministic.
"""

import datetime
import json

import pytest

from mqrgen import create_app
from mqrgen.config import TestConfig
from mqrgen.records import Account, Coupon, Subscription, Usage, new_id
from mqrgen.repositories.memory import MemoryStore
from mqrgen.utils.security import sign_hmac

UTC = datetime.timezone.utc
NOW = datetime.datetime(2026, 3, 14, 9, 30, tzinfo=UTC)


# ============================================================================
# STORES AND RECORDS
# ============================================================================

@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_account(store, now):
    """Add an account to ``store``; usage counters are taken as of ``now``."""

    def _make(plan="free", status="active", end_date=None, qr_today=0, api_today=0,
              last_reset=None, role="user", api_key=None, is_active=True, target=None):
        account = Account(
            id=new_id(),
            external_id=f"idp|{new_id()[:12]}",
            email="owner@example.com",
            first_name="Asha",
            last_name="Rao",
            role=role,
            subscription=Subscription(plan=plan, status=status, start_date=now, end_date=end_date),
            usage=Usage(
                qr_generated_today=qr_today,
                qr_generated_total=qr_today,
                api_calls_today=api_today,
                api_calls_total=api_today,
                last_reset_date=last_reset or now,
            ),
            api_key=api_key,
            is_active=is_active,
            created_at=now,
        )
        return (target or store).accounts.add(account)

    return _make


@pytest.fixture
def make_coupon(store, now):
    def _make(code="SAVE20", type="percentage", value=20, target=None, **fields):
        fields.setdefault("valid_from", now - datetime.timedelta(days=1))
        fields.setdefault("valid_until", now + datetime.timedelta(days=30))
        fields.setdefault("created_at", now)
        coupon = Coupon(
            id=new_id(),
            code=code,
            name=f"{code} promotion",
            type=type,
            value=value,
            **fields,
        )
        return (target or store).coupons.add(coupon)

    return _make


# ============================================================================
# FLASK APP
# ============================================================================

class FakeRenderer:
    """Records render calls instead of writing PNGs."""

    def __init__(self):
        self.calls = []

    def __call__(self, content, styling):
        self.calls.append((content, styling))
        return f"qrcodes/fake_{len(self.calls)}.png"


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def app(renderer):
    app = create_app(TestConfig)
    app.extensions["mqrgen.renderer"] = renderer
    return app


@pytest.fixture
def app_store(app):
    return app.extensions["mqrgen.store"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def token_for(app):
    """Identity token for ``subject`` signed with the test secret."""
    from mqrgen.utils.jwt_helper import encode_token

    def _token(subject, **claims):
        with app.app_context():
            return encode_token(subject, claims)

    return _token


@pytest.fixture
def auth_headers(token_for):
    def _headers(subject="idp|alice", **claims):
        claims.setdefault("email", f"{subject.split('|')[-1]}@example.com")
        return {"Authorization": f"Bearer {token_for(subject, **claims)}"}

    return _headers


@pytest.fixture
def login(client, auth_headers, app_store):
    """Sign in through /auth/me and return (headers, account)."""

    def _login(subject="idp|alice", **claims):
        headers = auth_headers(subject, **claims)
        response = client.get("/auth/me", headers=headers)
        assert response.status_code == 200
        return headers, app_store.accounts.get(response.get_json()["data"]["id"])

    return _login


@pytest.fixture
def signed_webhook(app):
    """Body and headers for a webhook signed with the test webhook secret."""

    def _sign(event):
        body = json.dumps(event)
        signature = sign_hmac(body, app.config["RAZORPAY_WEBHOOK_SECRET"])
        return body, {"X-Razorpay-Signature": signature, "Content-Type": "application/json"}

    return _sign
