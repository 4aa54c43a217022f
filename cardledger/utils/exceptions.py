"""
Custom exceptions for ledger business logic.

Each exception carries a machine-readable code and the HTTP status the API
layer should answer with, so blueprints can let them propagate to the
registered error handler instead of catching them one by one.
"""


class LedgerError(Exception):
    """Base exception for all ledger business logic errors."""

    status_code = 400

    def __init__(self, message: str, code: str = "LEDGER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(LedgerError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class InvalidAmountError(ValidationError):
    """Amount is zero, negative, or otherwise unusable for the operation."""

    def __init__(self, message: str = "Amount must be a positive number of cents"):
        super().__init__(message, field="amount")
        self.code = "INVALID_AMOUNT"


class NotFoundError(LedgerError):
    """Resource not found."""

    status_code = 404

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper()}_NOT_FOUND")


class TenantNotFoundError(NotFoundError):
    def __init__(self, identifier=None):
        super().__init__("Tenant", identifier)


class CardNotFoundError(NotFoundError):
    def __init__(self, identifier=None):
        super().__init__("Card", identifier)


class CustomerNotFoundError(NotFoundError):
    def __init__(self, identifier=None):
        super().__init__("Customer", identifier)


class PurchaseNotFoundError(NotFoundError):
    def __init__(self, identifier=None):
        super().__init__("Purchase", identifier)


class CardNotActiveError(LedgerError):
    """Card exists but cannot take balance mutations in its current status."""

    status_code = 409

    def __init__(self, card_id, status: str):
        self.card_id = card_id
        self.status = status
        super().__init__(f"Card {card_id} is not active (status: {status})", "CARD_NOT_ACTIVE")


class InsufficientBalanceError(LedgerError):
    """Not enough balance for the operation."""

    status_code = 422

    def __init__(self, current: int, required: int):
        self.current = current
        self.required = required
        message = f"Insufficient balance. Current: {current}, Required: {required}"
        super().__init__(message, "INSUFFICIENT_BALANCE")


class TrialLimitExceededError(LedgerError):
    """Tenant has used every free activation and has no active subscription."""

    status_code = 403

    def __init__(self, limit: int, used: int):
        self.limit = limit
        self.used = used
        message = (
            f"Free trial limit of {limit} activations has been reached. "
            f"Please upgrade to continue."
        )
        super().__init__(message, "TRIAL_LIMIT_EXCEEDED")


class InvalidStatusTransitionError(LedgerError):
    """Invalid status transition for a resource."""

    status_code = 409

    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        super().__init__(message, "INVALID_STATUS_TRANSITION")


class DuplicateWebhookEventError(LedgerError):
    """Webhook event already processed. Callers treat this as success."""

    status_code = 200

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Webhook event {event_id} already processed", "DUPLICATE_WEBHOOK_EVENT")


class MalformedWebhookError(LedgerError):
    """Webhook payload cannot be interpreted. Acknowledged, never retried."""

    def __init__(self, message: str):
        super().__init__(message, "MALFORMED_WEBHOOK")


class ExternalGatewayError(LedgerError):
    """Transient failure talking to a messaging or payment gateway."""

    status_code = 502

    def __init__(self, gateway: str, message: str, original_error: Exception = None):
        self.gateway = gateway
        self.original_error = original_error
        super().__init__(f"{gateway}: {message}", "EXTERNAL_GATEWAY_ERROR")


class PersistenceError(LedgerError):
    """Storage failed or a conditional write kept losing its race."""

    status_code = 500

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, "PERSISTENCE_ERROR")
