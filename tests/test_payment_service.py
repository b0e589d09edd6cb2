"""
Checkout tests: orders, completion idempotency and gateway webhooks.
"""

import datetime
from unittest.mock import MagicMock

import pytest
import requests

from mqrgen.errors import AuthError, ConflictError, GatewayError, NotFoundError, ValidationError
from mqrgen.services import payment_service, webhook_service
from mqrgen.services.coupon_service import apply_usage
from mqrgen.services.gateway import MockGateway, RazorpayGateway, build_gateway, sign_payment


@pytest.fixture
def gateway():
    return MockGateway()


def captured(payment, transaction_id="pay_001", event_id="evt_001", amount=None):
    return {
        "id": event_id,
        "event": "payment.captured",
        "payload": {"payment": {"entity": {
            "id": transaction_id,
            "order_id": payment.order_id,
            "amount": payment.amount if amount is None else amount,
        }}},
    }


class TestCreateOrder:
    def test_full_price(self, store, gateway, make_account, now):
        payment, order = payment_service.create_order(store, gateway, make_account(), "pro", now=now)

        assert payment.amount == 59900
        assert payment.status == "pending"
        assert payment.order_id == order["id"]
        assert store.payments.get_by_order_id(order["id"]).id == payment.id

    def test_coupon_discount_is_priced_not_redeemed(self, store, gateway, make_account, make_coupon, now):
        coupon = make_coupon(value=20)
        payment, order = payment_service.create_order(
            store, gateway, make_account(), "pro", coupon_code="save20", now=now
        )

        assert payment.amount == 47920
        assert order["amount"] == 47920
        assert payment.discount.coupon_code == "SAVE20"
        assert payment.discount.discount_amount == 11980
        assert store.coupons.get(coupon.id).used_count == 0

    @pytest.mark.parametrize("plan", ["free", "platinum", None])
    def test_rejects_unpurchasable_plans(self, store, gateway, make_account, now, plan):
        with pytest.raises(ValidationError):
            payment_service.create_order(store, gateway, make_account(), plan, now=now)

    def test_gateway_failure_records_nothing(self, store, make_account, now):
        failing = MagicMock()
        failing.create_order.side_effect = GatewayError("Payment gateway unavailable")
        account = make_account()

        with pytest.raises(GatewayError):
            payment_service.create_order(store, failing, account, "pro", now=now)
        assert store.payments.list_for_account(account.id) == ([], 0)


class TestCompletePayment:
    def test_activates_and_redeems(self, store, gateway, make_account, make_coupon, now):
        coupon = make_coupon(value=10)
        payment, _ = payment_service.create_order(store, gateway, make_account(), "pro", "SAVE20", now=now)

        account, completed = payment_service.complete_payment(store, payment, "pay_001", now)

        assert completed.status == "completed"
        assert completed.transaction_id == "pay_001"
        assert account.subscription.plan == "pro"
        assert account.subscription.end_date == now + datetime.timedelta(days=30)
        stored = store.coupons.get(coupon.id)
        assert stored.used_count == 1
        assert stored.used_by[0].payment_id == payment.id

    def test_same_transaction_twice_is_a_noop(self, store, gateway, make_account, now):
        payment, _ = payment_service.create_order(store, gateway, make_account(), "pro", now=now)
        first_account, _ = payment_service.complete_payment(store, payment, "pay_001", now)

        later = now + datetime.timedelta(hours=1)
        second_account, second_payment = payment_service.complete_payment(store, payment, "pay_001", later)

        assert second_account.subscription.end_date == first_account.subscription.end_date
        assert second_account.version == first_account.version
        assert second_payment.completed_at == now

    def test_coupon_exhausted_after_checkout_still_activates(self, store, gateway, make_account, make_coupon, now):
        coupon = make_coupon(usage_limit=1, user_usage_limit=5)
        account = make_account()
        payment, _ = payment_service.create_order(store, gateway, account, "pro", "SAVE20", now=now)
        apply_usage(store.coupons, coupon, "someone-else", None, now)

        activated, completed = payment_service.complete_payment(store, payment, "pay_002", now)

        assert completed.status == "completed"
        assert activated.subscription.plan == "pro"
        assert store.coupons.get(coupon.id).used_count == 1

    def test_declined_attempt_then_capture_completes(self, store, gateway, make_account, now):
        account = make_account()
        payment, _ = payment_service.create_order(store, gateway, account, "pro", now=now)
        payment_service.fail_payment(store, payment, "card declined", "pay_002")

        activated, completed = payment_service.complete_payment(store, payment, "pay_003", now)

        assert completed.status == "completed"
        assert completed.transaction_id == "pay_003"
        assert completed.metadata["failed_attempts"] == ["pay_002"]
        assert activated.subscription.plan == "pro"

    def test_failure_after_completion_is_ignored(self, store, gateway, make_account, now):
        payment, _ = payment_service.create_order(store, gateway, make_account(), "pro", now=now)
        payment_service.complete_payment(store, payment, "pay_001", now)

        assert payment_service.fail_payment(store, payment, "late decline", "pay_002").status == "completed"

    def test_refunded_payment_cannot_complete_again(self, store, gateway, make_account, now):
        payment, _ = payment_service.create_order(store, gateway, make_account(), "pro", now=now)
        payment_service.complete_payment(store, payment, "pay_001", now)
        payment_service.refund_payment(store, payment, now)

        with pytest.raises(ValidationError):
            payment_service.complete_payment(store, payment, "pay_003", now)
        # the claim was released
        assert not store.events.seen(payment_service.transaction_key("pay_003"))

    def test_transaction_in_flight_is_a_conflict(self, store, gateway, make_account, now):
        account = make_account()
        payment, _ = payment_service.create_order(store, gateway, account, "pro", now=now)
        # another worker has claimed the transaction but not finished
        store.events.record_once(payment_service.transaction_key("pay_001"), "payment.completed", now)

        with pytest.raises(ConflictError) as excinfo:
            payment_service.complete_payment(store, payment, "pay_001", now)

        assert excinfo.value.code == "PAYMENT_PROCESSING"
        assert store.payments.get(payment.id).status == "pending"
        assert store.accounts.get(account.id).subscription.plan == "free"


class TestVerifyPayment:
    def test_signature_checked_with_key_secret(self, store, make_account, now):
        gateway = RazorpayGateway("rzp_test_key", "key-secret", session=MagicMock())
        account = make_account()
        payment, _ = payment_service.create_order(store, MockGateway(), account, "enterprise", now=now)
        signature = sign_payment(payment.order_id, "pay_009", "key-secret")

        activated, completed = payment_service.verify_payment(
            store, gateway, account, payment.id, payment.order_id, "pay_009", signature, now
        )

        assert activated.subscription.plan == "enterprise"
        assert completed.status == "completed"

    def test_bad_signature(self, store, make_account, now):
        gateway = RazorpayGateway("rzp_test_key", "key-secret", session=MagicMock())
        account = make_account()
        payment, _ = payment_service.create_order(store, MockGateway(), account, "pro", now=now)

        with pytest.raises(AuthError):
            payment_service.verify_payment(
                store, gateway, account, payment.id, payment.order_id, "pay_009", "forged", now
            )
        assert store.payments.get(payment.id).status == "pending"

    def test_other_accounts_payment_is_not_found(self, store, gateway, make_account, now):
        payment, _ = payment_service.create_order(store, gateway, make_account(), "pro", now=now)

        with pytest.raises(NotFoundError):
            payment_service.verify_payment(
                store, gateway, make_account(), payment.id, payment.order_id, "pay_1", "sig", now
            )


class TestWebhooks:
    def test_captured_completes_once(self, store, gateway, make_account, now):
        payment, _ = payment_service.create_order(store, gateway, make_account(), "pro", now=now)

        assert webhook_service.process_webhook_event(store, captured(payment), now)[0]
        success, message = webhook_service.process_webhook_event(store, captured(payment), now)

        assert success
        assert message == "Duplicate event, already processed"
        assert store.payments.get(payment.id).status == "completed"

    def test_redelivered_under_new_event_id_is_deduped_by_transaction(self, store, gateway, make_account, now):
        account = make_account()
        payment, _ = payment_service.create_order(store, gateway, account, "pro", now=now)
        webhook_service.process_webhook_event(store, captured(payment, event_id="evt_a"), now)
        before = store.accounts.get(account.id)

        webhook_service.process_webhook_event(
            store, captured(payment, event_id="evt_b"), now + datetime.timedelta(minutes=5)
        )

        assert store.accounts.get(account.id).version == before.version

    def test_amount_mismatch_is_rejected(self, store, gateway, make_account, now):
        payment, _ = payment_service.create_order(store, gateway, make_account(), "pro", now=now)

        success, message = webhook_service.process_webhook_event(store, captured(payment, amount=100), now)

        assert not success
        assert store.payments.get(payment.id).status == "pending"

    def test_unknown_order(self, store, now):
        event = {"id": "evt_x", "event": "payment.captured",
                 "payload": {"payment": {"entity": {"id": "pay_x", "order_id": "order_missing"}}}}
        assert webhook_service.process_webhook_event(store, event, now) == (False, "Unknown order order_missing")

    def test_payment_failed(self, store, gateway, make_account, now):
        payment, _ = payment_service.create_order(store, gateway, make_account(), "pro", now=now)
        event = {"id": "evt_f", "event": "payment.failed", "payload": {"payment": {"entity": {
            "id": "pay_f", "order_id": payment.order_id, "error_description": "Card declined"}}}}

        assert webhook_service.process_webhook_event(store, event, now)[0]
        failed = store.payments.get(payment.id)
        assert failed.status == "failed"
        assert failed.metadata["failure_reason"] == "Card declined"

    def test_failed_then_captured_on_one_order(self, store, gateway, make_account, now):
        account = make_account()
        payment, _ = payment_service.create_order(store, gateway, account, "pro", now=now)
        failed = {"id": "evt_f", "event": "payment.failed", "payload": {"payment": {"entity": {
            "id": "pay_f", "order_id": payment.order_id, "error_description": "Card declined"}}}}

        assert webhook_service.process_webhook_event(store, failed, now)[0]
        assert webhook_service.process_webhook_event(store, captured(payment, "pay_ok", "evt_c"), now)[0]

        completed = store.payments.get(payment.id)
        assert completed.status == "completed"
        assert completed.transaction_id == "pay_ok"
        assert completed.metadata["failed_attempts"] == ["pay_f"]
        upgraded = store.accounts.get(account.id)
        assert upgraded.subscription.plan == "pro"
        assert upgraded.subscription.end_date == now + datetime.timedelta(days=30)

    def test_captured_while_verify_holds_the_transaction(self, store, gateway, make_account, now):
        payment, _ = payment_service.create_order(store, gateway, make_account(), "pro", now=now)
        store.events.record_once(payment_service.transaction_key("pay_001"), "payment.completed", now)

        with pytest.raises(ConflictError):
            webhook_service.process_webhook_event(store, captured(payment), now)

        # released, so the gateway's retry is processed
        assert not store.events.seen("evt:evt_001")
        assert store.payments.get(payment.id).status == "pending"

    def test_refund_cancels_subscription(self, store, gateway, make_account, now):
        account = make_account()
        payment, _ = payment_service.create_order(store, gateway, account, "pro", now=now)
        webhook_service.process_webhook_event(store, captured(payment), now)
        event = {"id": "evt_r", "event": "refund.processed",
                 "payload": {"refund": {"entity": {"id": "rfnd_1", "payment_id": "pay_001"}}}}

        assert webhook_service.process_webhook_event(store, event, now)[0]
        assert store.payments.get(payment.id).status == "refunded"
        assert store.accounts.get(account.id).subscription.status == "cancelled"

    def test_ignored_event_types(self, store, now):
        assert webhook_service.process_webhook_event(store, {"event": "order.paid"}, now) == (
            True, "Event order.paid ignored"
        )


class TestGateway:
    def test_build_gateway(self):
        assert build_gateway({"PAYMENT_GATEWAY": "mock"}).name == "mock"
        with pytest.raises(RuntimeError):
            build_gateway({"PAYMENT_GATEWAY": "razorpay"})
        with pytest.raises(RuntimeError):
            build_gateway({"PAYMENT_GATEWAY": "paypal"})

    def test_razorpay_order_request(self):
        session = MagicMock()
        session.post.return_value.status_code = 200
        session.post.return_value.json.return_value = {"id": "order_abc", "amount": 59900}
        gateway = RazorpayGateway("rzp_key", "rzp_secret", timeout=5, session=session)

        order = gateway.create_order(59900, "INR", "rcpt_1", {"plan": "pro"})

        assert order["id"] == "order_abc"
        _, kwargs = session.post.call_args
        assert kwargs["auth"] == ("rzp_key", "rzp_secret")
        assert kwargs["json"]["amount"] == 59900
        assert kwargs["timeout"] == 5

    def test_razorpay_network_error(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("down")
        gateway = RazorpayGateway("rzp_key", "rzp_secret", session=session)

        with pytest.raises(GatewayError):
            gateway.create_order(59900, "INR", "rcpt_1")

    def test_razorpay_error_status(self):
        session = MagicMock()
        session.post.return_value.status_code = 400
        session.post.return_value.text = "bad request"
        gateway = RazorpayGateway("rzp_key", "rzp_secret", session=session)

        with pytest.raises(GatewayError) as excinfo:
            gateway.create_order(59900, "INR", "rcpt_1")
        assert excinfo.value.details["gateway_status"] == 400
