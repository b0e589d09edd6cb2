"""
Subscription lifecycle and account service tests.
"""

import datetime

import pytest

from mqrgen.errors import EntitlementDenied, NotFoundError, ValidationError
from mqrgen.records import Subscription
from mqrgen.services import account_service, subscription_service


class TestEffectiveStatus:
    def test_active_without_end_date(self, now):
        assert subscription_service.effective_status(Subscription(), now) == "active"

    def test_active_past_end_is_expired(self, now):
        subscription = Subscription(plan="pro", end_date=now - datetime.timedelta(minutes=1))
        assert subscription_service.effective_status(subscription, now) == "expired"

    def test_cancelled_stays_cancelled(self, now):
        subscription = Subscription(plan="pro", status="cancelled", end_date=now + datetime.timedelta(days=5))
        assert subscription_service.effective_status(subscription, now) == "cancelled"


class TestActivate:
    def test_sets_thirty_day_window(self, store, make_account, now):
        account = make_account()
        result = subscription_service.activate(store.accounts, account, "pro", now=now)

        assert result.subscription.plan == "pro"
        assert result.subscription.status == "active"
        assert result.subscription.start_date == now
        assert result.subscription.end_date == now + datetime.timedelta(days=30)

    def test_reactivates_cancelled_account(self, store, make_account, now):
        account = make_account(plan="pro", status="cancelled")
        result = subscription_service.activate(store.accounts, account, "enterprise", 60, now)

        assert result.subscription.status == "active"
        assert result.subscription.end_date == now + datetime.timedelta(days=60)

    @pytest.mark.parametrize("plan,days", [("gold", 30), ("pro", 0), ("pro", -3)])
    def test_rejects_bad_input(self, store, make_account, now, plan, days):
        with pytest.raises(ValidationError):
            subscription_service.activate(store.accounts, make_account(), plan, days, now)


class TestCancel:
    def test_keeps_plan_and_ends_now(self, store, make_account, now):
        account = make_account(plan="pro", end_date=now + datetime.timedelta(days=12))

        result = subscription_service.cancel(store.accounts, account, now)

        assert result.subscription.status == "cancelled"
        assert result.subscription.plan == "pro"
        assert result.subscription.end_date == now

    def test_activate_then_cancel(self, store, make_account, now):
        account = subscription_service.activate(store.accounts, make_account(), "enterprise", 30, now)
        result = subscription_service.cancel(store.accounts, account, now)

        assert (result.subscription.plan, result.subscription.status) == ("enterprise", "cancelled")
        assert result.subscription.end_date == now

    def test_cancel_twice(self, store, make_account, now):
        account = make_account(plan="pro", end_date=now + datetime.timedelta(days=1))
        subscription_service.cancel(store.accounts, account, now)

        with pytest.raises(EntitlementDenied) as excinfo:
            subscription_service.cancel(store.accounts, account, now)
        assert excinfo.value.code == "NO_ACTIVE_SUBSCRIPTION"
        assert excinfo.value.status == 400

    def test_cannot_cancel_lapsed(self, store, make_account, now):
        account = make_account(plan="pro", end_date=now - datetime.timedelta(days=1))
        with pytest.raises(EntitlementDenied):
            subscription_service.cancel(store.accounts, account, now)


class TestAccounts:
    def test_first_login_creates_free_account(self, store, now):
        account = account_service.resolve_or_create_account(
            store.accounts, "idp|new", {"email": "New@Example.com", "given_name": "Nia"}, now
        )

        assert account.email == "new@example.com"
        assert account.first_name == "Nia"
        assert account.subscription.plan == "free"
        assert account.usage.qr_generated_today == 0
        assert account.role == "user"

    def test_second_login_updates_last_login(self, store, now):
        first = account_service.resolve_or_create_account(store.accounts, "idp|same", {}, now)
        later = now + datetime.timedelta(hours=2)
        second = account_service.resolve_or_create_account(store.accounts, "idp|same", {}, later)

        assert second.id == first.id
        assert second.last_login == later

    def test_missing_subject(self, store, now):
        with pytest.raises(ValidationError):
            account_service.resolve_or_create_account(store.accounts, "", {}, now)

    def test_api_key_format_and_lookup(self, store, make_account):
        account = account_service.generate_api_key(store.accounts, make_account())

        assert account.api_key.startswith("mqr_")
        assert len(account.api_key) == 4 + 64
        assert account_service.find_by_api_key(store.accounts, account.api_key).id == account.id
        assert account_service.find_by_api_key(store.accounts, "mqr_" + "0" * 64) is None

    def test_inactive_account_key_rejected(self, store, make_account):
        account = make_account(api_key="mqr_" + "a" * 64, is_active=False)
        assert account_service.find_by_api_key(store.accounts, account.api_key) is None

    def test_set_role(self, store, make_account):
        account = make_account()
        assert account_service.set_role(store.accounts, account.id, "admin").role == "admin"
        with pytest.raises(ValidationError):
            account_service.set_role(store.accounts, account.id, "owner")
        with pytest.raises(NotFoundError):
            account_service.set_role(store.accounts, "missing", "admin")

    def test_override_subscription(self, store, make_account, now):
        account = make_account()
        end = now + datetime.timedelta(days=90)

        result = account_service.override_subscription(
            store.accounts, account.id, plan="enterprise", end_date=end, now=now
        )

        assert result.subscription.plan == "enterprise"
        assert result.subscription.end_date == end
        assert result.subscription.status == "active"

    def test_override_requires_a_change(self, store, make_account):
        with pytest.raises(ValidationError):
            account_service.override_subscription(store.accounts, make_account().id)
