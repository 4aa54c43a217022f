"""
Customer and card models.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class CardStatus(str, Enum):
    UNASSIGNED = 'UNASSIGNED'
    ACTIVE = 'ACTIVE'
    BLOCKED = 'BLOCKED'


class NotificationChannel(str, Enum):
    SMS = 'SMS'
    WHATSAPP = 'WHATSAPP'
    EMAIL = 'EMAIL'


class Customer(db.Model):
    """
    A card holder.

    total_spend_cents only ever grows (EARN adds the purchase amount), and
    tier is always written in the same conditional update as the spend it was
    derived from.
    """
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)

    name = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    email = db.Column(db.String(255))
    preferred_channel = db.Column(db.String(20), nullable=False, default=NotificationChannel.SMS.value)

    tier = db.Column(db.String(50), nullable=False, default='SILVER')
    total_spend_cents = db.Column(db.BigInteger, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = db.relationship('Tenant', backref=db.backref('customers', lazy='dynamic'))
    cards = db.relationship('Card', backref='customer', lazy='dynamic')

    __table_args__ = (
        db.Index('ix_customers_tenant_phone', 'tenant_id', 'phone'),
    )

    def __repr__(self):
        return f'<Customer {self.id} {self.tier}>'

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'name': self.name,
            'phone': self.phone,
            'email': self.email,
            'preferred_channel': self.preferred_channel,
            'tier': self.tier,
            'total_spend_cents': self.total_spend_cents,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Card(db.Model):
    """A balance-bearing loyalty card. balance_cents is never negative."""
    __tablename__ = 'cards'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), index=True)
    store_id = db.Column(db.Integer, db.ForeignKey('stores.id'))

    uid = db.Column(db.String(64), unique=True, nullable=False)  # printed / QR identifier
    status = db.Column(db.String(20), nullable=False, default=CardStatus.UNASSIGNED.value)
    balance_cents = db.Column(db.BigInteger, nullable=False, default=0)

    activated_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = db.relationship('Tenant', backref=db.backref('cards', lazy='dynamic'))
    store = db.relationship('Store')

    __table_args__ = (
        db.CheckConstraint('balance_cents >= 0', name='balance_non_negative'),
    )

    def __repr__(self):
        return f'<Card {self.uid} {self.status}>'

    @property
    def is_active(self) -> bool:
        return self.status == CardStatus.ACTIVE.value

    def to_dict(self):
        return {
            'id': self.id,
            'uid': self.uid,
            'tenant_id': self.tenant_id,
            'customer_id': self.customer_id,
            'store_id': self.store_id,
            'status': self.status,
            'balance_cents': self.balance_cents,
            'activated_at': self.activated_at.isoformat() if self.activated_at else None,
        }
