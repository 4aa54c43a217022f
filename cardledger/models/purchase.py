"""
Pending external payments.

A PurchaseTransaction moves PENDING -> CONFIRMED | FAILED exactly once and
only through conditional updates in PaymentReconciliationService. A CONFIRMED
record without ledger_transaction_id is a credit still owed to the card; the
reconciliation sweep picks those up.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class PurchaseStatus(str, Enum):
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    FAILED = 'FAILED'


class PurchaseKind(str, Enum):
    PURCHASE = 'PURCHASE'  # credits as EARN (cashback on amount)
    TOP_UP = 'TOP_UP'      # credits as ADD_FUNDS (amount itself)


class PaymentMethod(str, Enum):
    CASH = 'CASH'
    QR_PAYMENT = 'QR_PAYMENT'
    CARD = 'CARD'


class PurchaseTransaction(db.Model):
    __tablename__ = 'purchase_transactions'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    card_id = db.Column(db.Integer, db.ForeignKey('cards.id'), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey('stores.id'))
    actor_id = db.Column(db.String(100))

    kind = db.Column(db.String(20), nullable=False, default=PurchaseKind.PURCHASE.value)
    category = db.Column(db.String(20), nullable=False, default='PURCHASE')
    payment_method = db.Column(db.String(20), nullable=False)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    description = db.Column(db.String(255))

    status = db.Column(db.String(20), nullable=False, default=PurchaseStatus.PENDING.value)
    external_id = db.Column(db.String(100), unique=True)  # pi_xxx / cs_xxx

    # Ledger credit bookkeeping
    ledger_transaction_id = db.Column(db.Integer, db.ForeignKey('transactions.id'))
    credit_attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text)

    confirmed_at = db.Column(db.DateTime)
    failed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    card = db.relationship('Card')
    payment_link = db.relationship('PaymentLink', backref='purchase', uselist=False)

    __table_args__ = (
        db.Index('ix_purchase_transactions_status', 'status', 'ledger_transaction_id'),
    )

    def __repr__(self):
        return f'<PurchaseTransaction {self.id} {self.status}>'

    @property
    def idempotency_key(self) -> str:
        return f'purchase:{self.id}'

    @property
    def is_terminal(self) -> bool:
        return self.status in (PurchaseStatus.CONFIRMED.value, PurchaseStatus.FAILED.value)

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'card_id': self.card_id,
            'store_id': self.store_id,
            'kind': self.kind,
            'category': self.category,
            'payment_method': self.payment_method,
            'amount_cents': self.amount_cents,
            'description': self.description,
            'status': self.status,
            'external_id': self.external_id,
            'ledger_transaction_id': self.ledger_transaction_id,
            'credit_attempts': self.credit_attempts,
            'last_error': self.last_error,
            'confirmed_at': self.confirmed_at.isoformat() if self.confirmed_at else None,
            'payment_link': self.payment_link.to_dict() if self.payment_link else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class PaymentLink(db.Model):
    """Customer-facing payment URL for a pending purchase (rendered as a QR code by the UI)."""
    __tablename__ = 'payment_links'

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey('purchase_transactions.id'), nullable=False, unique=True)
    token = db.Column(db.String(64), unique=True, nullable=False)
    url = db.Column(db.String(500), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'token': self.token,
            'url': self.url,
            'expires_at': self.expires_at.isoformat(),
            'used_at': self.used_at.isoformat() if self.used_at else None,
        }


class ProcessedWebhookEvent(db.Model):
    """One row per processor event id. Insertion is the redelivery guard."""
    __tablename__ = 'processed_webhook_events'

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(100), unique=True, nullable=False)
    event_type = db.Column(db.String(100), nullable=False)
    processed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<ProcessedWebhookEvent {self.event_id}>'
