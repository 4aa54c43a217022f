"""
Tenant and store models.

A tenant is one loyalty-program business. It owns stores, customers, cards
and rate rules, and carries the free-trial counters enforced by the trial
gate.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class SubscriptionStatus(str, Enum):
    NONE = 'NONE'
    TRIALING = 'TRIALING'
    ACTIVE = 'ACTIVE'
    PAST_DUE = 'PAST_DUE'
    CANCELED = 'CANCELED'


DEFAULT_FREE_TRIAL_LIMIT = 40


class Tenant(db.Model):
    """A business running a loyalty program."""
    __tablename__ = 'tenants'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)

    # Where trial notices go
    contact_email = db.Column(db.String(255))
    contact_phone = db.Column(db.String(50))

    # Subscription (Stripe)
    subscription_status = db.Column(db.String(20), nullable=False, default=SubscriptionStatus.TRIALING.value)
    stripe_customer_id = db.Column(db.String(50))
    stripe_subscription_id = db.Column(db.String(50), index=True)
    grace_ends_at = db.Column(db.DateTime)

    # Free trial counters. Written only through conditional updates.
    free_trial_limit = db.Column(db.Integer, nullable=False, default=DEFAULT_FREE_TRIAL_LIMIT)
    free_trial_activations = db.Column(db.Integer, nullable=False, default=0)
    trial_expired_notified = db.Column(db.Boolean, nullable=False, default=False)
    trial_last_warned_remaining = db.Column(db.Integer)

    # Bumped on every rule edit; part of the rule cache key
    rules_version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    stores = db.relationship('Store', backref='tenant', lazy='dynamic')

    def __repr__(self):
        return f'<Tenant {self.slug}>'

    @property
    def is_subscribed(self) -> bool:
        return self.subscription_status == SubscriptionStatus.ACTIVE.value

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'subscription_status': self.subscription_status,
            'free_trial_limit': self.free_trial_limit,
            'free_trial_activations': self.free_trial_activations,
            'trial_expired_notified': self.trial_expired_notified,
            'grace_ends_at': self.grace_ends_at.isoformat() if self.grace_ends_at else None,
            'rules_version': self.rules_version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Store(db.Model):
    """A physical location of a tenant where cards are used."""
    __tablename__ = 'stores'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Store {self.name}>'

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'name': self.name,
            'is_active': self.is_active,
        }
