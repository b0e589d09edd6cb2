import datetime
import uuid
from ..extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = db.Column(db.String(255), unique=True, nullable=False, index=True)  # idempotency key
    event_type = db.Column(db.String(100), nullable=False, index=True)  # e.g. payment.captured
    payment_id = db.Column(db.String(255), nullable=True, index=True)
    account_id = db.Column(db.String(36), nullable=True, index=True)
    processed_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<WebhookEvent {self.event_id} - {self.event_type}>"
