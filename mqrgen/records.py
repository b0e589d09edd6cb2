"""
Entitlement records

Immutable snapshots of accounts, coupons and payments as they move between
the services and the storage backends. Services never mutate a record in
place: they build a replacement with ``dataclasses.replace`` and hand it to a
repository's compare-and-swap ``save``. ``version`` is owned by the store.

All money fields are integer minor units (paise for INR).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .utils.timeutils import as_utc


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class Plan(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class CouponType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Subscription:
    plan: str = Plan.FREE.value
    status: str = SubscriptionStatus.ACTIVE.value
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass(frozen=True)
class Usage:
    """Daily and lifetime counters. ``*_today`` reset when the UTC date changes."""
    qr_generated_today: int = 0
    qr_generated_total: int = 0
    api_calls_today: int = 0
    api_calls_total: int = 0
    last_reset_date: Optional[datetime] = None


@dataclass(frozen=True)
class Account:
    id: str
    external_id: str
    email: str
    first_name: str = "User"
    last_name: str = ""
    avatar: Optional[str] = None
    role: str = Role.USER.value
    subscription: Subscription = field(default_factory=Subscription)
    usage: Usage = field(default_factory=Usage)
    api_key: Optional[str] = None
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    version: int = 0

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self) -> bool:
        return self.role in (Role.ADMIN.value, Role.SUPER_ADMIN.value)


@dataclass(frozen=True)
class Redemption:
    account_id: str
    payment_id: Optional[str]
    used_at: datetime


@dataclass(frozen=True)
class Coupon:
    id: str
    code: str
    name: str
    type: str
    value: int
    valid_from: datetime
    valid_until: datetime
    description: Optional[str] = None
    max_discount: Optional[int] = None
    min_amount: int = 0
    applicable_plans: FrozenSet[str] = frozenset({Plan.PRO.value, Plan.ENTERPRISE.value})
    usage_limit: Optional[int] = None
    used_count: int = 0
    user_usage_limit: int = 1
    is_active: bool = True
    created_by: Optional[str] = None
    used_by: Tuple[Redemption, ...] = ()
    created_at: Optional[datetime] = None
    version: int = 0

    def is_valid(self, now: datetime) -> bool:
        """Active, inside its validity window and not exhausted network-wide."""
        if not self.is_active:
            return False
        now = as_utc(now)
        if not (as_utc(self.valid_from) <= now <= as_utc(self.valid_until)):
            return False
        return self.usage_limit is None or self.used_count < self.usage_limit

    def uses_by(self, account_id: str) -> int:
        return sum(1 for entry in self.used_by if entry.account_id == account_id)

    @property
    def remaining_usage(self) -> Optional[int]:
        if self.usage_limit is None:
            return None
        return max(0, self.usage_limit - self.used_count)


@dataclass(frozen=True)
class Discount:
    coupon_code: Optional[str] = None
    discount_amount: int = 0
    discount_percentage: int = 0


@dataclass(frozen=True)
class Payment:
    id: str
    account_id: str
    order_id: str
    amount: int
    plan: str
    currency: str = "INR"
    status: str = PaymentStatus.PENDING.value
    transaction_id: Optional[str] = None
    discount: Discount = field(default_factory=Discount)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = 0


@dataclass(frozen=True)
class Entitlement:
    """Outcome of a gate check. ``reason`` carries the denial code."""
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    current: Optional[int] = None
    limit: Optional[int] = None
    requested: Optional[int] = None
    remaining: Optional[int] = None
    current_plan: Optional[str] = None
    required_plan: Optional[str] = None
    subscription_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in self.__dict__.items() if value is not None}


@dataclass(frozen=True)
class GeneratedQr:
    title: str
    content: str
    type: str
    image: str
    created_at: datetime
