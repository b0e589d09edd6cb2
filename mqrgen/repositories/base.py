import abc
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from ..errors import ConflictError, NotFoundError, StaleVersionError
from ..records import Account, Coupon, Payment

logger = logging.getLogger(__name__)

DEFAULT_CONFLICT_RETRIES = 8


class Repository(abc.ABC):
    """Versioned record store with compare-and-swap writes.

    ``save(record, expected_version)`` writes only when the stored version
    still equals ``expected_version`` and returns the record at its new
    version; otherwise it raises ``StaleVersionError``.
    """

    entity = "record"

    def __init__(self, conflict_retries: int = DEFAULT_CONFLICT_RETRIES):
        self.conflict_retries = conflict_retries

    @abc.abstractmethod
    def get(self, record_id: str):
        ...

    @abc.abstractmethod
    def add(self, record):
        ...

    @abc.abstractmethod
    def save(self, record, expected_version: int):
        ...

    def update(self, record_id: str, mutate: Callable):
        """Reload, apply ``mutate`` and compare-and-swap until it sticks.

        ``mutate`` gets the freshest stored record and returns either a
        replacement or the very same object when nothing needs writing.
        Exceptions raised by ``mutate`` propagate with nothing written.
        """
        for attempt in range(1, self.conflict_retries + 1):
            current = self.get(record_id)
            if current is None:
                raise NotFoundError(f"{self.entity.capitalize()} not found", id=record_id)
            updated = mutate(current)
            if updated is current:
                return current
            try:
                return self.save(updated, expected_version=current.version)
            except StaleVersionError:
                logger.debug("Version conflict on %s %s (attempt %d)", self.entity, record_id, attempt)
        logger.warning("Gave up on %s %s after %d conflicting writes", self.entity, record_id, self.conflict_retries)
        raise ConflictError(
            f"{self.entity.capitalize()} was modified concurrently, please retry",
            entity=self.entity,
            id=record_id,
        )


class AccountRepository(Repository):
    entity = "account"

    @abc.abstractmethod
    def get(self, account_id: str) -> Optional[Account]:
        ...

    @abc.abstractmethod
    def get_by_external_id(self, external_id: str) -> Optional[Account]:
        ...

    @abc.abstractmethod
    def get_by_api_key(self, api_key: str) -> Optional[Account]:
        ...

    @abc.abstractmethod
    def list(
        self,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        plan: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Tuple[List[Account], int]:
        """Newest first. ``search`` matches name or email, case-insensitively."""


class CouponRepository(Repository):
    entity = "coupon"

    @abc.abstractmethod
    def get(self, coupon_id: str) -> Optional[Coupon]:
        ...

    @abc.abstractmethod
    def get_by_code(self, code: str) -> Optional[Coupon]:
        ...

    @abc.abstractmethod
    def list(self, page: int = 1, limit: int = 20, is_active: Optional[bool] = None) -> Tuple[List[Coupon], int]:
        """Newest first. Returns the page and the total match count."""


class PaymentRepository(Repository):
    entity = "payment"

    @abc.abstractmethod
    def get(self, payment_id: str) -> Optional[Payment]:
        ...

    @abc.abstractmethod
    def get_by_order_id(self, order_id: str) -> Optional[Payment]:
        ...

    @abc.abstractmethod
    def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        ...

    @abc.abstractmethod
    def list_for_account(
        self, account_id: str, page: int = 1, limit: int = 10, status: Optional[str] = None
    ) -> Tuple[List[Payment], int]:
        """Newest first. Returns the page and the total match count."""

    @abc.abstractmethod
    def list(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        plan: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> Tuple[List[Payment], int]:
        """All payments, newest first, optionally filtered."""

    @abc.abstractmethod
    def totals(self, account_id: Optional[str] = None) -> dict:
        """Counts and minor-unit sums, see ``payment_totals``."""


def payment_totals(count, amount, completed, completed_amount, failed, refunded) -> dict:
    return {
        "total_payments": count,
        "total_amount": amount,
        "completed_payments": completed,
        "completed_amount": completed_amount,
        "failed_payments": failed,
        "refunded_payments": refunded,
        "average_amount": amount // count if count else 0,
    }


class EventLedger(abc.ABC):
    """Set of processed gateway keys (event ids, transaction ids)."""

    @abc.abstractmethod
    def record_once(self, key: str, event_type: str, processed_at: datetime, **context) -> bool:
        """Claim ``key``. True for the first caller, False for every later one."""

    @abc.abstractmethod
    def forget(self, key: str) -> None:
        """Release a claim whose processing failed so a retry can run."""

    @abc.abstractmethod
    def seen(self, key: str) -> bool:
        ...


class Store:
    backend = "abstract"

    def __init__(
        self,
        accounts: AccountRepository,
        coupons: CouponRepository,
        payments: PaymentRepository,
        events: EventLedger,
    ):
        self.accounts = accounts
        self.coupons = coupons
        self.payments = payments
        self.events = events
