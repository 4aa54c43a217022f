"""
Notification delivery records.

One row per message. Only the dispatcher writes to it, and only the delivery
fields (status, attempts, error, sent_at) change after creation.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class NotificationStatus(str, Enum):
    PENDING = 'PENDING'
    SENT = 'SENT'
    FAILED = 'FAILED'


class Notification(db.Model):
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), index=True)  # NULL for tenant notices

    channel = db.Column(db.String(20), nullable=False)
    template = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.JSON, default=dict)
    recipient = db.Column(db.String(255))

    status = db.Column(db.String(20), nullable=False, default=NotificationStatus.PENDING.value)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    error = db.Column(db.Text)
    sent_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_notifications_status_created', 'status', 'created_at'),
    )

    def __repr__(self):
        return f'<Notification {self.id} {self.template} {self.status}>'

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'customer_id': self.customer_id,
            'channel': self.channel,
            'template': self.template,
            'payload': self.payload or {},
            'status': self.status,
            'attempts': self.attempts,
            'error': self.error,
            'sent_at': self.sent_at.isoformat() if self.sent_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
