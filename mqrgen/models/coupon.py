import datetime
from ..extensions import db


class CouponModel(db.Model):
    __tablename__ = "coupons"

    id = db.Column(db.String(36), primary_key=True)
    code = db.Column(db.String(32), unique=True, nullable=False, index=True)  # stored uppercase
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    type = db.Column(db.String(20), nullable=False)  # percentage | fixed
    value = db.Column(db.Integer, nullable=False)
    max_discount = db.Column(db.Integer, nullable=True)  # minor units, percentage coupons only
    min_amount = db.Column(db.Integer, nullable=False, default=0)
    applicable_plans = db.Column(db.String(100), nullable=False, default="enterprise,pro")
    usage_limit = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)
    user_usage_limit = db.Column(db.Integer, nullable=False, default=1)
    valid_from = db.Column(db.DateTime, nullable=False)
    valid_until = db.Column(db.DateTime, nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    def __repr__(self):
        return f"<CouponModel {self.code} {self.used_count}/{self.usage_limit}>"


class CouponRedemptionModel(db.Model):
    """Append-only ledger of coupon uses. Row count per coupon equals used_count."""
    __tablename__ = "coupon_redemptions"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    coupon_id = db.Column(db.String(36), db.ForeignKey("coupons.id"), nullable=False, index=True)
    account_id = db.Column(db.String(36), nullable=False, index=True)
    payment_id = db.Column(db.String(36), nullable=True)
    used_at = db.Column(db.DateTime, nullable=False)
