"""
Business logic services for the cardledger platform.
"""
from .balance_ledger import BalanceLedger, balance_ledger
from .card_service import CardService, card_service
from .notification_dispatcher import NotificationDispatcher, notification_dispatcher
from .payment_reconciliation import PaymentEvent, PaymentReconciliationService, payment_reconciliation
from .rule_service import RuleService, RuleSet, rule_service
from .trial_gate import ActivationResult, TrialGateService, trial_gate
