import dataclasses
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..errors import DuplicateRecordError, StaleVersionError
from ..utils.timeutils import utcnow
from .base import (
    DEFAULT_CONFLICT_RETRIES,
    AccountRepository,
    CouponRepository,
    EventLedger,
    PaymentRepository,
    Store,
    payment_totals,
)


class _MemoryTable:
    """Dict of records guarded by one lock. Unique columns are checked on write."""

    unique_fields: Tuple[str, ...] = ()

    def __init__(self, conflict_retries: int = DEFAULT_CONFLICT_RETRIES):
        super().__init__(conflict_retries)
        self._rows: Dict[str, object] = {}
        self._lock = threading.Lock()

    def get(self, record_id):
        with self._lock:
            return self._rows.get(record_id)

    def _find(self, **criteria):
        with self._lock:
            for row in self._rows.values():
                if all(getattr(row, key) == value for key, value in criteria.items()):
                    return row
        return None

    def _check_unique(self, record):
        for name in self.unique_fields:
            value = getattr(record, name)
            if value is None:
                continue
            for row in self._rows.values():
                if row.id != record.id and getattr(row, name) == value:
                    raise DuplicateRecordError(self.entity, name, value)

    def add(self, record):
        with self._lock:
            if record.id in self._rows:
                raise DuplicateRecordError(self.entity, "id", record.id)
            self._check_unique(record)
            stored = dataclasses.replace(record, version=1, created_at=record.created_at or utcnow())
            self._rows[record.id] = stored
            return stored

    def save(self, record, expected_version: int):
        with self._lock:
            current = self._rows.get(record.id)
            if current is None or current.version != expected_version:
                raise StaleVersionError(self.entity, record.id, expected_version)
            self._check_unique(record)
            stored = dataclasses.replace(record, version=expected_version + 1)
            self._rows[record.id] = stored
            return stored

    def _page(self, rows: List, page: int, limit: int) -> Tuple[List, int]:
        rows = sorted(rows, key=lambda row: row.created_at, reverse=True)
        start = (page - 1) * limit
        return rows[start:start + limit], len(rows)


class MemoryAccountRepository(_MemoryTable, AccountRepository):
    unique_fields = ("external_id", "api_key")

    def get_by_external_id(self, external_id):
        return self._find(external_id=external_id)

    def get_by_api_key(self, api_key):
        if not api_key:
            return None
        return self._find(api_key=api_key)

    def list(self, page=1, limit=20, search=None, plan=None, status=None):
        needle = search.lower() if search else None

        def matches(row):
            if plan is not None and row.subscription.plan != plan:
                return False
            if status is not None and row.subscription.status != status:
                return False
            if needle:
                haystack = (row.first_name or "", row.last_name or "", row.email or "")
                return any(needle in value.lower() for value in haystack)
            return True

        with self._lock:
            rows = [row for row in self._rows.values() if matches(row)]
        return self._page(rows, page, limit)


class MemoryCouponRepository(_MemoryTable, CouponRepository):
    unique_fields = ("code",)

    def get_by_code(self, code):
        return self._find(code=code)

    def list(self, page=1, limit=20, is_active=None):
        with self._lock:
            rows = [row for row in self._rows.values() if is_active is None or row.is_active == is_active]
        return self._page(rows, page, limit)


class MemoryPaymentRepository(_MemoryTable, PaymentRepository):
    unique_fields = ("order_id", "transaction_id")

    def get_by_order_id(self, order_id):
        return self._find(order_id=order_id)

    def get_by_transaction_id(self, transaction_id):
        if not transaction_id:
            return None
        return self._find(transaction_id=transaction_id)

    def list_for_account(self, account_id, page=1, limit=10, status=None):
        with self._lock:
            rows = [
                row for row in self._rows.values()
                if row.account_id == account_id and (status is None or row.status == status)
            ]
        return self._page(rows, page, limit)

    def list(self, page=1, limit=20, status=None, plan=None, account_id=None):
        with self._lock:
            rows = [
                row for row in self._rows.values()
                if (status is None or row.status == status)
                and (plan is None or row.plan == plan)
                and (account_id is None or row.account_id == account_id)
            ]
        return self._page(rows, page, limit)

    def totals(self, account_id=None):
        with self._lock:
            rows = [row for row in self._rows.values() if account_id is None or row.account_id == account_id]
        completed = [row for row in rows if row.status == "completed"]
        return payment_totals(
            len(rows),
            sum(row.amount for row in rows),
            len(completed),
            sum(row.amount for row in completed),
            sum(1 for row in rows if row.status == "failed"),
            sum(1 for row in rows if row.status == "refunded"),
        )


class MemoryEventLedger(EventLedger):
    def __init__(self):
        self._keys: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def record_once(self, key: str, event_type: str, processed_at: datetime, **context) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys[key] = {"event_type": event_type, "processed_at": processed_at, **context}
            return True

    def forget(self, key: str) -> None:
        with self._lock:
            self._keys.pop(key, None)

    def seen(self, key: str) -> bool:
        with self._lock:
            return key in self._keys


class MemoryStore(Store):
    """Process-local store. Every read and CAS write holds the table lock."""

    backend = "memory"

    def __init__(self, conflict_retries: int = DEFAULT_CONFLICT_RETRIES):
        super().__init__(
            accounts=MemoryAccountRepository(conflict_retries),
            coupons=MemoryCouponRepository(conflict_retries),
            payments=MemoryPaymentRepository(conflict_retries),
            events=MemoryEventLedger(),
        )
