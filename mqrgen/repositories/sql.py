import dataclasses
import json
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateRecordError, StaleVersionError
from ..extensions import db
from ..models.account import AccountModel
from ..models.coupon import CouponModel, CouponRedemptionModel
from ..models.payment import PaymentModel
from ..models.webhook_events import WebhookEvent
from ..records import Account, Coupon, Discount, Payment, Redemption, Subscription, Usage
from ..utils.timeutils import as_utc, utcnow
from .base import (
    DEFAULT_CONFLICT_RETRIES,
    AccountRepository,
    CouponRepository,
    EventLedger,
    PaymentRepository,
    Store,
    payment_totals,
)

logger = logging.getLogger(__name__)


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    # DateTime columns hold naive UTC
    if value is None:
        return None
    return as_utc(value).replace(tzinfo=None)


class _SqlTable:
    """Compare-and-swap writes as ``UPDATE ... WHERE id = ? AND version = ?``."""

    model = None

    def _load(self, **criteria):
        return (
            db.session.query(self.model)
            .filter_by(**criteria)
            .populate_existing()
            .first()
        )

    def get(self, record_id):
        row = self._load(id=record_id)
        return self._to_record(row) if row is not None else None

    def add(self, record):
        if record.created_at is None:
            record = dataclasses.replace(record, created_at=utcnow())
        values = self._to_values(record)
        values["version"] = 1
        db.session.add(self.model(**values))
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateRecordError(self.entity, "unique key", record.id) from exc
        return dataclasses.replace(record, version=1)

    def save(self, record, expected_version: int):
        values = self._to_values(record)
        values.pop("id")
        values["version"] = expected_version + 1
        values["updated_at"] = _naive(utcnow())
        try:
            matched = (
                db.session.query(self.model)
                .filter_by(id=record.id, version=expected_version)
                .update(values, synchronize_session=False)
            )
            if not matched:
                db.session.rollback()
                raise StaleVersionError(self.entity, record.id, expected_version)
            self._after_save(record)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateRecordError(self.entity, "unique key", record.id) from exc
        return dataclasses.replace(record, version=expected_version + 1)

    def _after_save(self, record):
        pass

    def _page(self, query, page, limit):
        total = query.count()
        rows = (
            query.order_by(self.model.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return [self._to_record(row) for row in rows], total


class SqlAccountRepository(_SqlTable, AccountRepository):
    model = AccountModel

    def get_by_external_id(self, external_id):
        row = self._load(external_id=external_id)
        return self._to_record(row) if row is not None else None

    def get_by_api_key(self, api_key):
        if not api_key:
            return None
        row = self._load(api_key=api_key)
        return self._to_record(row) if row is not None else None

    def list(self, page=1, limit=20, search=None, plan=None, status=None):
        query = db.session.query(AccountModel)
        if plan is not None:
            query = query.filter(AccountModel.plan == plan)
        if status is not None:
            query = query.filter(AccountModel.subscription_status == status)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                AccountModel.first_name.ilike(pattern),
                AccountModel.last_name.ilike(pattern),
                AccountModel.email.ilike(pattern),
            ))
        return self._page(query, page, limit)

    def _to_record(self, row: AccountModel) -> Account:
        return Account(
            id=row.id,
            external_id=row.external_id,
            email=row.email,
            first_name=row.first_name,
            last_name=row.last_name,
            avatar=row.avatar,
            role=row.role,
            subscription=Subscription(
                plan=row.plan,
                status=row.subscription_status,
                start_date=as_utc(row.subscription_start),
                end_date=as_utc(row.subscription_end),
            ),
            usage=Usage(
                qr_generated_today=row.qr_generated_today,
                qr_generated_total=row.qr_generated_total,
                api_calls_today=row.api_calls_today,
                api_calls_total=row.api_calls_total,
                last_reset_date=as_utc(row.last_reset_date),
            ),
            api_key=row.api_key,
            is_active=row.is_active,
            last_login=as_utc(row.last_login),
            created_at=as_utc(row.created_at),
            version=row.version,
        )

    def _to_values(self, account: Account) -> dict:
        return {
            "id": account.id,
            "external_id": account.external_id,
            "email": account.email,
            "first_name": account.first_name,
            "last_name": account.last_name,
            "avatar": account.avatar,
            "role": account.role,
            "plan": account.subscription.plan,
            "subscription_status": account.subscription.status,
            "subscription_start": _naive(account.subscription.start_date),
            "subscription_end": _naive(account.subscription.end_date),
            "qr_generated_today": account.usage.qr_generated_today,
            "qr_generated_total": account.usage.qr_generated_total,
            "api_calls_today": account.usage.api_calls_today,
            "api_calls_total": account.usage.api_calls_total,
            "last_reset_date": _naive(account.usage.last_reset_date),
            "api_key": account.api_key,
            "is_active": account.is_active,
            "last_login": _naive(account.last_login),
            "created_at": _naive(account.created_at or utcnow()),
        }


class SqlCouponRepository(_SqlTable, CouponRepository):
    model = CouponModel

    def get_by_code(self, code):
        row = self._load(code=code)
        return self._to_record(row) if row is not None else None

    def list(self, page=1, limit=20, is_active=None):
        query = db.session.query(CouponModel)
        if is_active is not None:
            query = query.filter(CouponModel.is_active == is_active)
        return self._page(query, page, limit)

    def add(self, coupon):
        stored = super().add(coupon)
        if coupon.used_by:
            self._append_redemptions(coupon, 0)
            db.session.commit()
        return stored

    def _after_save(self, coupon):
        # The ledger only grows; persist entries past what is already stored.
        stored = (
            db.session.query(CouponRedemptionModel)
            .filter_by(coupon_id=coupon.id)
            .count()
        )
        self._append_redemptions(coupon, stored)

    def _append_redemptions(self, coupon, start):
        for entry in coupon.used_by[start:]:
            db.session.add(CouponRedemptionModel(
                coupon_id=coupon.id,
                account_id=entry.account_id,
                payment_id=entry.payment_id,
                used_at=_naive(entry.used_at),
            ))

    def _to_record(self, row: CouponModel) -> Coupon:
        ledger = (
            db.session.query(CouponRedemptionModel)
            .filter_by(coupon_id=row.id)
            .order_by(CouponRedemptionModel.id)
            .all()
        )
        return Coupon(
            id=row.id,
            code=row.code,
            name=row.name,
            description=row.description,
            type=row.type,
            value=row.value,
            max_discount=row.max_discount,
            min_amount=row.min_amount,
            applicable_plans=frozenset(plan for plan in row.applicable_plans.split(",") if plan),
            usage_limit=row.usage_limit,
            used_count=row.used_count,
            user_usage_limit=row.user_usage_limit,
            valid_from=as_utc(row.valid_from),
            valid_until=as_utc(row.valid_until),
            is_active=row.is_active,
            created_by=row.created_by,
            used_by=tuple(
                Redemption(account_id=entry.account_id, payment_id=entry.payment_id, used_at=as_utc(entry.used_at))
                for entry in ledger
            ),
            created_at=as_utc(row.created_at),
            version=row.version,
        )

    def _to_values(self, coupon: Coupon) -> dict:
        return {
            "id": coupon.id,
            "code": coupon.code,
            "name": coupon.name,
            "description": coupon.description,
            "type": coupon.type,
            "value": coupon.value,
            "max_discount": coupon.max_discount,
            "min_amount": coupon.min_amount,
            "applicable_plans": ",".join(sorted(coupon.applicable_plans)),
            "usage_limit": coupon.usage_limit,
            "used_count": coupon.used_count,
            "user_usage_limit": coupon.user_usage_limit,
            "valid_from": _naive(coupon.valid_from),
            "valid_until": _naive(coupon.valid_until),
            "is_active": coupon.is_active,
            "created_by": coupon.created_by,
            "created_at": _naive(coupon.created_at or utcnow()),
        }


class SqlPaymentRepository(_SqlTable, PaymentRepository):
    model = PaymentModel

    def get_by_order_id(self, order_id):
        row = self._load(order_id=order_id)
        return self._to_record(row) if row is not None else None

    def get_by_transaction_id(self, transaction_id):
        if not transaction_id:
            return None
        row = self._load(transaction_id=transaction_id)
        return self._to_record(row) if row is not None else None

    def list_for_account(self, account_id, page=1, limit=10, status=None):
        query = db.session.query(PaymentModel).filter_by(account_id=account_id)
        if status is not None:
            query = query.filter_by(status=status)
        return self._page(query, page, limit)

    def list(self, page=1, limit=20, status=None, plan=None, account_id=None):
        criteria = {
            key: value
            for key, value in (("status", status), ("plan", plan), ("account_id", account_id))
            if value is not None
        }
        return self._page(db.session.query(PaymentModel).filter_by(**criteria), page, limit)

    def totals(self, account_id=None):
        def count_if(status):
            return func.coalesce(func.sum(case((PaymentModel.status == status, 1), else_=0)), 0)

        query = db.session.query(
            func.count(PaymentModel.id),
            func.coalesce(func.sum(PaymentModel.amount), 0),
            count_if("completed"),
            func.coalesce(func.sum(case((PaymentModel.status == "completed", PaymentModel.amount), else_=0)), 0),
            count_if("failed"),
            count_if("refunded"),
        )
        if account_id is not None:
            query = query.filter(PaymentModel.account_id == account_id)
        return payment_totals(*(int(value) for value in query.one()))

    def _to_record(self, row: PaymentModel) -> Payment:
        return Payment(
            id=row.id,
            account_id=row.account_id,
            order_id=row.order_id,
            transaction_id=row.transaction_id,
            amount=row.amount,
            currency=row.currency,
            plan=row.plan,
            status=row.status,
            discount=Discount(
                coupon_code=row.coupon_code,
                discount_amount=row.discount_amount,
                discount_percentage=row.discount_percentage,
            ),
            metadata=json.loads(row.metadata_json) if row.metadata_json else {},
            created_at=as_utc(row.created_at),
            completed_at=as_utc(row.completed_at),
            version=row.version,
        )

    def _to_values(self, payment: Payment) -> dict:
        return {
            "id": payment.id,
            "account_id": payment.account_id,
            "order_id": payment.order_id,
            "transaction_id": payment.transaction_id,
            "amount": payment.amount,
            "currency": payment.currency,
            "plan": payment.plan,
            "status": payment.status,
            "coupon_code": payment.discount.coupon_code,
            "discount_amount": payment.discount.discount_amount,
            "discount_percentage": payment.discount.discount_percentage,
            "metadata_json": json.dumps(payment.metadata) if payment.metadata else None,
            "created_at": _naive(payment.created_at or utcnow()),
            "completed_at": _naive(payment.completed_at),
        }


class SqlEventLedger(EventLedger):
    """Processed keys live in ``webhook_events``. The unique index on event_id arbitrates."""

    def record_once(self, key, event_type, processed_at, **context):
        db.session.add(WebhookEvent(
            event_id=key,
            event_type=event_type,
            payment_id=context.get("payment_id"),
            account_id=context.get("account_id"),
            processed_at=_naive(processed_at),
        ))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.info("Gateway key %s already processed, skipping", key)
            return False
        return True

    def forget(self, key):
        db.session.query(WebhookEvent).filter_by(event_id=key).delete(synchronize_session=False)
        db.session.commit()

    def seen(self, key):
        return db.session.query(WebhookEvent.id).filter_by(event_id=key).first() is not None


class SqlStore(Store):
    backend = "sql"

    def __init__(self, conflict_retries: int = DEFAULT_CONFLICT_RETRIES):
        super().__init__(
            accounts=SqlAccountRepository(conflict_retries),
            coupons=SqlCouponRepository(conflict_retries),
            payments=SqlPaymentRepository(conflict_retries),
            events=SqlEventLedger(),
        )
