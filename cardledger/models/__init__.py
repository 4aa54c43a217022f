"""
Database models for the cardledger platform.
Cards, cashback ledger, tiers, trial counters and payment reconciliation.
"""
from .tenant import Tenant, Store, SubscriptionStatus, DEFAULT_FREE_TRIAL_LIMIT
from .customer import Customer, Card, CardStatus, NotificationChannel
from .rules import CashbackRule, TierRule, TransactionCategory
from .transaction import Transaction, TransactionType, ImmutableTransactionError, signed_delta
from .purchase import (
    PurchaseTransaction,
    PaymentLink,
    ProcessedWebhookEvent,
    PurchaseStatus,
    PurchaseKind,
    PaymentMethod,
)
from .notification import Notification, NotificationStatus
from .job_lease import JobLease

__all__ = [
    'Tenant',
    'Store',
    'SubscriptionStatus',
    'DEFAULT_FREE_TRIAL_LIMIT',
    'Customer',
    'Card',
    'CardStatus',
    'NotificationChannel',
    'CashbackRule',
    'TierRule',
    'TransactionCategory',
    'Transaction',
    'TransactionType',
    'ImmutableTransactionError',
    'signed_delta',
    'PurchaseTransaction',
    'PaymentLink',
    'ProcessedWebhookEvent',
    'PurchaseStatus',
    'PurchaseKind',
    'PaymentMethod',
    'Notification',
    'NotificationStatus',
    'JobLease',
]
