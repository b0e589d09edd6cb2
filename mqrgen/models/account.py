import datetime
from ..extensions import db


class AccountModel(db.Model):
    __tablename__ = "accounts"

    id = db.Column(db.String(36), primary_key=True)
    external_id = db.Column(db.String(255), unique=True, nullable=False, index=True)  # identity provider subject
    email = db.Column(db.String(255), nullable=False, index=True)
    first_name = db.Column(db.String(100), nullable=False, default="User")
    last_name = db.Column(db.String(100), nullable=False, default="")
    avatar = db.Column(db.String(500), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="user")

    plan = db.Column(db.String(20), nullable=False, default="free")
    subscription_status = db.Column(db.String(20), nullable=False, default="active")
    subscription_start = db.Column(db.DateTime, nullable=True)
    subscription_end = db.Column(db.DateTime, nullable=True)

    qr_generated_today = db.Column(db.Integer, nullable=False, default=0)
    qr_generated_total = db.Column(db.Integer, nullable=False, default=0)
    api_calls_today = db.Column(db.Integer, nullable=False, default=0)
    api_calls_total = db.Column(db.Integer, nullable=False, default=0)
    last_reset_date = db.Column(db.DateTime, nullable=True)

    api_key = db.Column(db.String(80), unique=True, nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_login = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=True)

    # Bumped by every compare-and-swap write
    version = db.Column(db.Integer, nullable=False, default=1)

    def __repr__(self):
        return f"<AccountModel {self.id} {self.plan}/{self.subscription_status}>"
