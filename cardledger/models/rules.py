"""
Cashback and tier rate tables.

Both are per-tenant. Edits go through RuleService so that
Tenant.rules_version is bumped and cached rule sets are dropped.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class TransactionCategory(str, Enum):
    PURCHASE = 'PURCHASE'
    REPAIR = 'REPAIR'
    OTHER = 'OTHER'


class CashbackRule(db.Model):
    """Base cashback rate for one category, in basis points (10000 = 100%)."""
    __tablename__ = 'cashback_rules'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False)
    category = db.Column(db.String(20), nullable=False)
    base_rate_bps = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Optional promotional window
    starts_at = db.Column(db.DateTime)
    ends_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_cashback_rules_tenant_category', 'tenant_id', 'category'),
    )

    def __repr__(self):
        return f'<CashbackRule {self.category} {self.base_rate_bps}bps>'

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'category': self.category,
            'base_rate_bps': self.base_rate_bps,
            'is_active': self.is_active,
            'starts_at': self.starts_at.isoformat() if self.starts_at else None,
            'ends_at': self.ends_at.isoformat() if self.ends_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class TierRule(db.Model):
    """Tier name, the cumulative spend that unlocks it, and its cashback multiplier."""
    __tablename__ = 'tier_rules'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    tier = db.Column(db.String(50), nullable=False)
    min_total_spend_cents = db.Column(db.BigInteger, nullable=False, default=0)
    multiplier_bps = db.Column(db.Integer, nullable=False, default=10000)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'tier', name='uq_tier_rules_tenant_tier'),
    )

    def __repr__(self):
        return f'<TierRule {self.tier} >={self.min_total_spend_cents}>'

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'tier': self.tier,
            'min_total_spend_cents': self.min_total_spend_cents,
            'multiplier_bps': self.multiplier_bps,
            'is_active': self.is_active,
        }
