"""
Payment gateway clients.

``RazorpayGateway`` talks to the Razorpay Orders API with ``requests``.
``MockGateway`` mints local order ids and accepts every signature; it is
meant for development and tests and is selected with PAYMENT_GATEWAY=mock.
"""

import abc
import logging
import secrets
import time

import requests

from ..errors import GatewayError
from ..utils.security import sign_hmac, verify_hmac_signature

logger = logging.getLogger(__name__)


class PaymentGateway(abc.ABC):
    name = "abstract"
    key_id = None

    @abc.abstractmethod
    def create_order(self, amount: int, currency: str, receipt: str, notes: dict | None = None) -> dict:
        """Create an order and return the gateway's order document (must contain ``id``)."""

    @abc.abstractmethod
    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...


class RazorpayGateway(PaymentGateway):
    name = "razorpay"
    API_BASE = "https://api.razorpay.com/v1"

    def __init__(self, key_id: str, key_secret: str, timeout: int = 10, session: requests.Session | None = None):
        self.key_id = key_id
        self._key_secret = key_secret
        self._timeout = timeout
        self._session = session or requests.Session()

    def create_order(self, amount, currency, receipt, notes=None):
        body = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}}
        try:
            response = self._session.post(
                f"{self.API_BASE}/orders",
                json=body,
                auth=(self.key_id, self._key_secret),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.error("Razorpay order request failed: %s", exc)
            raise GatewayError("Payment gateway unavailable") from exc

        if response.status_code != 200:
            logger.error("Razorpay order creation failed: %s %s", response.status_code, response.text)
            raise GatewayError("Failed to create payment order", gateway_status=response.status_code)

        order = response.json()
        logger.info("Razorpay order %s created for %d %s", order.get("id"), amount, currency)
        return order

    def verify_payment_signature(self, order_id, payment_id, signature):
        return verify_hmac_signature(f"{order_id}|{payment_id}", signature, self._key_secret)


class MockGateway(PaymentGateway):
    name = "mock"
    key_id = "rzp_test_mock"

    def create_order(self, amount, currency, receipt, notes=None):
        order_id = f"order_{int(time.time())}_{secrets.token_hex(6)}_mock"
        logger.debug("Mock order %s for %d %s", order_id, amount, currency)
        return {
            "id": order_id,
            "entity": "order",
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "status": "created",
            "notes": notes or {},
        }

    def verify_payment_signature(self, order_id, payment_id, signature):
        return True


def sign_payment(order_id: str, payment_id: str, key_secret: str) -> str:
    """Signature Razorpay Checkout returns for a successful payment."""
    return sign_hmac(f"{order_id}|{payment_id}", key_secret)


def build_gateway(config) -> PaymentGateway:
    kind = config.get("PAYMENT_GATEWAY", "mock")
    if kind == "mock":
        return MockGateway()
    if kind == "razorpay":
        key_id = config.get("RAZORPAY_KEY_ID")
        key_secret = config.get("RAZORPAY_KEY_SECRET")
        if not key_id or not key_secret:
            raise RuntimeError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET are required for the razorpay gateway")
        return RazorpayGateway(key_id, key_secret, timeout=config.get("GATEWAY_TIMEOUT", 10))
    raise RuntimeError(f"Unknown PAYMENT_GATEWAY: {kind!r}")
