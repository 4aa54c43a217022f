"""
Ledger transaction model.

Rows are append-only: once flushed they can be neither updated nor deleted
through the ORM. Every row satisfies

    after_balance_cents == before_balance_cents + signed_delta(type, amount, cashback)
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import event
from ..extensions import db


class TransactionType(str, Enum):
    EARN = 'EARN'            # purchase recorded, cashback credited
    REDEEM = 'REDEEM'        # balance spent
    ADJUST = 'ADJUST'        # admin signed delta
    ADD_FUNDS = 'ADD_FUNDS'  # top-up paid by cash or through the processor


def signed_delta(txn_type: str, amount_cents: int, cashback_cents: int = 0) -> int:
    """Balance change a transaction of this type applies to its card."""
    txn_type = TransactionType(txn_type)
    if txn_type == TransactionType.EARN:
        return cashback_cents
    if txn_type == TransactionType.REDEEM:
        return -amount_cents
    # ADJUST stores its signed delta as the amount; ADD_FUNDS credits the amount
    return amount_cents


class ImmutableTransactionError(Exception):
    """Raised when code tries to modify or delete a committed ledger row."""


class Transaction(db.Model):
    __tablename__ = 'transactions'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False)
    card_id = db.Column(db.Integer, db.ForeignKey('cards.id'), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), index=True)
    store_id = db.Column(db.Integer, db.ForeignKey('stores.id'))
    actor_id = db.Column(db.String(100))  # staff user, or 'system:stripe'

    type = db.Column(db.String(20), nullable=False)
    category = db.Column(db.String(20), nullable=False)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    cashback_cents = db.Column(db.BigInteger, nullable=False, default=0)
    before_balance_cents = db.Column(db.BigInteger, nullable=False)
    after_balance_cents = db.Column(db.BigInteger, nullable=False)
    note = db.Column(db.Text)

    # e.g. 'purchase:42'; one external credit produces at most one row
    idempotency_key = db.Column(db.String(120), unique=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    card = db.relationship('Card', backref=db.backref('transactions', lazy='dynamic'))
    customer = db.relationship('Customer', backref=db.backref('transactions', lazy='dynamic'))
    store = db.relationship('Store')

    __table_args__ = (
        db.Index('ix_transactions_card_created', 'card_id', 'created_at'),
        db.Index('ix_transactions_tenant_created', 'tenant_id', 'created_at'),
    )

    def __repr__(self):
        return f'<Transaction {self.id} {self.type} {self.before_balance_cents}->{self.after_balance_cents}>'

    @property
    def delta_cents(self) -> int:
        return signed_delta(self.type, self.amount_cents, self.cashback_cents)

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'card_id': self.card_id,
            'customer_id': self.customer_id,
            'store_id': self.store_id,
            'actor_id': self.actor_id,
            'type': self.type,
            'category': self.category,
            'amount_cents': self.amount_cents,
            'cashback_cents': self.cashback_cents,
            'before_balance_cents': self.before_balance_cents,
            'after_balance_cents': self.after_balance_cents,
            'note': self.note,
            'idempotency_key': self.idempotency_key,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@event.listens_for(Transaction, 'before_update')
def _refuse_update(mapper, connection, target):
    raise ImmutableTransactionError(f'Transaction {target.id} is immutable')


@event.listens_for(Transaction, 'before_delete')
def _refuse_delete(mapper, connection, target):
    raise ImmutableTransactionError(f'Transaction {target.id} cannot be deleted')
