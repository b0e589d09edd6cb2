import datetime
from ..extensions import db


class PaymentModel(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.String(36), primary_key=True)
    account_id = db.Column(db.String(36), db.ForeignKey("accounts.id"), nullable=False, index=True)
    order_id = db.Column(db.String(255), unique=True, nullable=False, index=True)  # gateway order id
    transaction_id = db.Column(db.String(255), unique=True, nullable=True, index=True)  # gateway payment id
    amount = db.Column(db.Integer, nullable=False)  # minor units, after discount
    currency = db.Column(db.String(3), nullable=False, default="INR")
    plan = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    coupon_code = db.Column(db.String(32), nullable=True)
    discount_amount = db.Column(db.Integer, nullable=False, default=0)
    discount_percentage = db.Column(db.Integer, nullable=False, default=0)
    metadata_json = db.Column("metadata", db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False, index=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    def __repr__(self):
        return f"<PaymentModel {self.order_id} {self.status}>"
