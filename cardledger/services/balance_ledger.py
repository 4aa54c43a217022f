"""
Balance Ledger.

apply_transaction() is the single entry point that changes a card balance.
Each call is one database transaction:

1. Lock and read the card (SELECT ... FOR UPDATE where the backend has it).
2. Validate. Every error is raised here, before anything is written.
3. EARN: compute cashback and write the customer's new spend and tier in
   one conditional UPDATE on the spend value just read.
4. Conditionally UPDATE the card balance (WHERE balance = before AND
   status = 'ACTIVE') and insert the Transaction row.
5. Commit.

If either conditional UPDATE matches no row, another writer got there
first; the whole unit is rolled back and re-run from step 1, up to
LEDGER_MAX_RETRIES times. Notifications are handed to the dispatcher only
after the commit.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import (
    Card,
    CardStatus,
    Customer,
    Store,
    Transaction,
    TransactionCategory,
    TransactionType,
)
from ..utils.exceptions import (
    CardNotActiveError,
    CardNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from . import tier_engine
from .notification_templates import NotificationTemplate, format_cents
from .rate_resolver import compute_cashback, resolve_tier_multiplier

logger = logging.getLogger(__name__)


class _LostRace(Exception):
    """A conditional update matched no row; retry the unit."""


@dataclass
class _PendingNotice:
    customer_id: int
    tenant_id: int
    template: NotificationTemplate
    variables: dict = field(default_factory=dict)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class BalanceLedger:
    """
    Usage:
        from cardledger.services.balance_ledger import balance_ledger

        txn = balance_ledger.apply_transaction(
            card_id=card.id,
            txn_type='EARN',
            amount_cents=10000,
            category='PURCHASE',
            store_id=store.id,
            actor_id='staff:7',
        )
    """

    def __init__(self, dispatcher=None, rules=None):
        self._dispatcher = dispatcher
        self._rules = rules

    @property
    def dispatcher(self):
        if self._dispatcher is None:
            from .notification_dispatcher import notification_dispatcher
            self._dispatcher = notification_dispatcher
        return self._dispatcher

    @property
    def rules(self):
        if self._rules is None:
            from .rule_service import rule_service
            self._rules = rule_service
        return self._rules

    # ==================== Entry point ====================

    def apply_transaction(
        self,
        card_id: int,
        txn_type,
        amount_cents: int,
        category=TransactionCategory.PURCHASE,
        store_id: int = None,
        actor_id: str = None,
        note: str = None,
        idempotency_key: str = None,
        tenant_id: int = None,
        notify: bool = True,
    ) -> Transaction:
        """
        Apply one ledger operation to a card and return the committed row.

        For ADJUST, amount_cents is the signed delta. tenant_id, when given,
        must own the card. A repeated idempotency_key returns the row that
        key already produced without touching the balance.

        Raises:
            ValidationError / InvalidAmountError: bad type, category or amount
            CardNotFoundError / NotFoundError: unknown card or store
            CardNotActiveError: card is UNASSIGNED or BLOCKED
            InsufficientBalanceError: REDEEM or ADJUST would go below zero
            PersistenceError: storage failure or retries exhausted
        """
        txn_type = self._coerce_type(txn_type)
        category = self._coerce_category(category)
        self._validate_amount(txn_type, amount_cents)

        if idempotency_key:
            existing = Transaction.query.filter_by(idempotency_key=idempotency_key).first()
            if existing:
                logger.info(f'[Ledger] Idempotent replay of {idempotency_key}, returning transaction {existing.id}')
                return existing

        max_retries = current_app.config.get('LEDGER_MAX_RETRIES', 5)

        for attempt in range(1, max_retries + 1):
            try:
                txn, notices = self._apply_once(
                    card_id, txn_type, amount_cents, category,
                    store_id, actor_id, note, idempotency_key, tenant_id,
                )
            except _LostRace:
                db.session.rollback()
                logger.info(f'[Ledger] Card {card_id} changed concurrently, retrying ({attempt}/{max_retries})')
                continue
            except LedgerError:
                db.session.rollback()
                raise
            except IntegrityError as e:
                db.session.rollback()
                if idempotency_key:
                    existing = Transaction.query.filter_by(idempotency_key=idempotency_key).first()
                    if existing:
                        return existing
                raise PersistenceError(f'Could not record {txn_type.value} on card {card_id}', e)
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f'[Ledger] Storage error on card {card_id}: {e}')
                raise PersistenceError(f'Could not record {txn_type.value} on card {card_id}', e)

            logger.info(
                f'[Ledger] {txn.type} card={txn.card_id} amount={txn.amount_cents} '
                f'cashback={txn.cashback_cents} balance {txn.before_balance_cents}->{txn.after_balance_cents}'
            )
            if notify:
                self._send_notices(notices)
            return txn

        raise PersistenceError(f'Card {card_id} kept changing; gave up after {max_retries} attempts')

    # ==================== Validation ====================

    def _coerce_type(self, txn_type) -> TransactionType:
        try:
            return TransactionType(getattr(txn_type, 'value', txn_type))
        except ValueError:
            raise ValidationError(f'Unknown transaction type: {txn_type}', field='type')

    def _coerce_category(self, category) -> TransactionCategory:
        try:
            return TransactionCategory(getattr(category, 'value', category) or TransactionCategory.PURCHASE.value)
        except ValueError:
            raise ValidationError(f'Unknown category: {category}', field='category')

    def _validate_amount(self, txn_type: TransactionType, amount_cents) -> None:
        if not _is_int(amount_cents):
            raise InvalidAmountError('Amount must be an integer number of cents')
        if txn_type == TransactionType.ADJUST:
            if amount_cents == 0:
                raise InvalidAmountError('Adjustment cannot be zero')
        elif amount_cents <= 0:
            raise InvalidAmountError()

    # ==================== Atomic unit ====================

    def _apply_once(self, card_id, txn_type, amount_cents, category,
                    store_id, actor_id, note, idempotency_key, tenant_id):
        now = datetime.utcnow()

        card = Card.query.filter_by(id=card_id).with_for_update().populate_existing().first()
        if card is None or (tenant_id is not None and card.tenant_id != tenant_id):
            raise CardNotFoundError(card_id)
        if card.status != CardStatus.ACTIVE.value:
            raise CardNotActiveError(card_id, card.status)

        store = None
        if store_id is not None:
            store = db.session.get(Store, store_id)
            if store is None or store.tenant_id != card.tenant_id:
                raise NotFoundError('Store', store_id)
            if card.store_id is not None and card.store_id != store.id:
                raise ValidationError(
                    f'Card {card_id} is registered to store {card.store_id}, not store {store_id}',
                    field='store_id',
                )

        before = card.balance_cents
        cashback = 0
        notices: List[_PendingNotice] = []
        customer = None
        if card.customer_id:
            customer = Customer.query.filter_by(id=card.customer_id).populate_existing().first()

        if txn_type == TransactionType.EARN:
            if customer is None:
                raise ValidationError('Card is not linked to a customer', field='card')
            rule_set = self.rules.get_rule_set(card.tenant_id)
            cashback, old_tier, new_tier = self._earn_customer_update(customer, rule_set, amount_cents, category, now)
            delta = cashback
            if tier_engine.is_upgrade(old_tier, new_tier, rule_set.tier_rules):
                notices.append(_PendingNotice(customer.id, card.tenant_id, NotificationTemplate.TIER_UPGRADED, {
                    'customerName': customer.name or '',
                    'newTier': new_tier,
                }))
        elif txn_type == TransactionType.REDEEM:
            if amount_cents > before:
                raise InsufficientBalanceError(before, amount_cents)
            delta = -amount_cents
        elif txn_type == TransactionType.ADJUST:
            if before + amount_cents < 0:
                raise InsufficientBalanceError(before, -amount_cents)
            delta = amount_cents
        else:
            delta = amount_cents

        after = before + delta

        result = db.session.execute(
            update(Card)
            .where(
                Card.id == card.id,
                Card.balance_cents == before,
                Card.status == CardStatus.ACTIVE.value,
            )
            .values(balance_cents=after, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise _LostRace()

        txn = Transaction(
            tenant_id=card.tenant_id,
            card_id=card.id,
            customer_id=card.customer_id,
            store_id=store_id,
            actor_id=actor_id,
            type=txn_type.value,
            category=category.value,
            amount_cents=amount_cents,
            cashback_cents=cashback,
            before_balance_cents=before,
            after_balance_cents=after,
            note=note,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        db.session.add(txn)
        db.session.commit()

        if customer is not None:
            notices.insert(0, self._balance_notice(
                txn_type, customer, card, store, amount_cents, cashback, after,
            ))
        return txn, notices

    def _earn_customer_update(self, customer: Customer, rule_set, amount_cents: int,
                              category: TransactionCategory, now: datetime):
        """
        Cashback for the purchase, plus the spend/tier write.

        Spend and tier go out in one UPDATE guarded by the spend and tier just
        read, so two concurrent EARNs can't each write a tier derived from a
        stale total.
        """
        config = current_app.config

        spend_before = customer.total_spend_cents or 0
        old_tier = customer.tier

        multiplier = resolve_tier_multiplier(old_tier, rule_set.tier_rules)
        cashback = compute_cashback(amount_cents, category, multiplier, rule_set.cashback_rules, now)

        new_spend = spend_before + amount_cents
        new_tier = tier_engine.recompute_tier_for_customer(
            old_tier,
            new_spend,
            rule_set.tier_rules,
            default=rule_set.default_tier(config.get('DEFAULT_TIER', tier_engine.DEFAULT_TIER)),
            allow_downgrade=config.get('TIER_ALLOW_DOWNGRADE', False),
        )

        result = db.session.execute(
            update(Customer)
            .where(
                Customer.id == customer.id,
                Customer.total_spend_cents == spend_before,
                Customer.tier == old_tier,
            )
            .values(total_spend_cents=new_spend, tier=new_tier, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise _LostRace()

        if new_tier != old_tier:
            logger.info(f'[Ledger] Customer {customer.id} tier {old_tier} -> {new_tier} at spend {new_spend}')
        return cashback, old_tier, new_tier

    # ==================== Notifications ====================

    def _balance_notice(self, txn_type, customer, card, store, amount_cents, cashback, after) -> _PendingNotice:
        variables = {
            'customerName': customer.name or '',
            'storeName': store.name if store else '',
            'balance': format_cents(after),
            'cardUid': card.uid,
        }
        if txn_type == TransactionType.EARN:
            template = NotificationTemplate.CASHBACK_EARNED
            variables['amount'] = format_cents(cashback)
            variables['transactionAmount'] = format_cents(amount_cents)
        elif txn_type == TransactionType.REDEEM:
            template = NotificationTemplate.CASHBACK_REDEEMED
            variables['amount'] = format_cents(amount_cents)
        elif txn_type == TransactionType.ADD_FUNDS:
            template = NotificationTemplate.FUNDS_ADDED
            variables['amount'] = format_cents(amount_cents)
        else:
            template = NotificationTemplate.BALANCE_UPDATE
            variables['amount'] = format_cents(abs(amount_cents))
        return _PendingNotice(customer.id, card.tenant_id, template, variables)

    def _send_notices(self, notices: List[_PendingNotice]) -> None:
        for notice in notices:
            try:
                self.dispatcher.enqueue(
                    notice.customer_id,
                    notice.template,
                    notice.variables,
                    tenant_id=notice.tenant_id,
                )
            except Exception as e:
                logger.warning(f'[Ledger] Failed to enqueue {notice.template.value} (non-blocking): {e}')

    # ==================== Queries ====================

    def get_card_transactions(self, card_id: int, tenant_id: int = None,
                              limit: int = 50, offset: int = 0) -> List[Transaction]:
        card = db.session.get(Card, card_id)
        if card is None or (tenant_id is not None and card.tenant_id != tenant_id):
            raise CardNotFoundError(card_id)
        return (
            Transaction.query
            .filter_by(card_id=card_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )


# Singleton instance
balance_ledger = BalanceLedger()
