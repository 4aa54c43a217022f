"""
Utility modules for the ledger.
"""
from .exceptions import (
    LedgerError,
    ValidationError,
    InvalidAmountError,
    NotFoundError,
    TenantNotFoundError,
    CardNotFoundError,
    CustomerNotFoundError,
    PurchaseNotFoundError,
    CardNotActiveError,
    InsufficientBalanceError,
    TrialLimitExceededError,
    InvalidStatusTransitionError,
    DuplicateWebhookEventError,
    MalformedWebhookError,
    ExternalGatewayError,
    PersistenceError,
)
