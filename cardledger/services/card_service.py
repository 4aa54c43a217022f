"""
Card lifecycle: activation, block/unblock, tier progress.

Activation takes a trial slot and flips the card UNASSIGNED -> ACTIVE in the
same transaction, so a card that loses the activation race gives its slot
back on rollback.
"""
import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Card, CardStatus, Customer, NotificationChannel, Store
from ..utils.exceptions import (
    CardNotFoundError,
    CustomerNotFoundError,
    InvalidStatusTransitionError,
    LedgerError,
    NotFoundError,
    TrialLimitExceededError,
    ValidationError,
)
from . import tier_engine
from .notification_templates import NotificationTemplate
from .trial_gate import trial_gate as default_trial_gate

logger = logging.getLogger(__name__)


class CardService:

    def __init__(self, trial_gate=None, dispatcher=None, rules=None):
        self.trial_gate = trial_gate or default_trial_gate
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

    def get_card(self, tenant_id: int, card_id: int) -> Card:
        card = Card.query.filter_by(id=card_id, tenant_id=tenant_id).first()
        if not card:
            raise CardNotFoundError(card_id)
        return card

    def activate_card(self, tenant_id: int, card_id: int, store_id: int = None,
                      customer_id: int = None, customer_data: dict = None) -> Card:
        """
        Activate an UNASSIGNED card for an existing or new customer.

        Raises TrialLimitExceededError when the tenant has no free
        activations left and no active subscription.
        """
        card = self.get_card(tenant_id, card_id)
        if card.status != CardStatus.UNASSIGNED.value:
            raise InvalidStatusTransitionError('card', card.status, CardStatus.ACTIVE.value)

        if store_id is not None:
            store = Store.query.filter_by(id=store_id, tenant_id=tenant_id).first()
            if not store:
                raise NotFoundError('Store', store_id)

        try:
            customer = self._resolve_customer(tenant_id, customer_id, customer_data)

            activation = self.trial_gate.track_card_activation(tenant_id, commit=False)
            if not activation.allowed:
                tenant_limit = activation.activations_used + activation.activations_remaining
                raise TrialLimitExceededError(tenant_limit, activation.activations_used)

            db.session.flush()
            result = db.session.execute(
                update(Card)
                .where(Card.id == card.id, Card.status == CardStatus.UNASSIGNED.value)
                .values(
                    status=CardStatus.ACTIVE.value,
                    customer_id=customer.id,
                    store_id=store_id,
                    activated_at=datetime.utcnow(),
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidStatusTransitionError('card', 'activated concurrently', CardStatus.ACTIVE.value)

            db.session.commit()
        except LedgerError:
            db.session.rollback()
            raise

        logger.info(f'[Cards] Card {card_id} activated for customer {customer.id} (tenant {tenant_id})')

        self.trial_gate.dispatch_trial_notices(tenant_id, activation)
        self._send_welcome(card_id)

        db.session.refresh(card)
        return card

    def _resolve_customer(self, tenant_id: int, customer_id: int = None, customer_data: dict = None) -> Customer:
        if customer_id:
            customer = Customer.query.filter_by(id=customer_id, tenant_id=tenant_id).first()
            if not customer:
                raise CustomerNotFoundError(customer_id)
            return customer

        if not customer_data:
            raise ValidationError('customer_id or customer details are required', field='customer')

        phone = (customer_data.get('phone') or '').strip() or None
        email = (customer_data.get('email') or '').strip() or None
        if not phone and not email:
            raise ValidationError('A phone number or email is required', field='customer')

        channel = (customer_data.get('preferred_channel') or '').upper()
        if channel not in {c.value for c in NotificationChannel}:
            channel = NotificationChannel.EMAIL.value if email and not phone else NotificationChannel.SMS.value

        rule_set = self.rules.get_rule_set(tenant_id)
        customer = Customer(
            tenant_id=tenant_id,
            name=customer_data.get('name'),
            phone=phone,
            email=email,
            preferred_channel=channel,
            tier=rule_set.default_tier(current_app.config.get('DEFAULT_TIER', tier_engine.DEFAULT_TIER)),
            total_spend_cents=0,
        )
        db.session.add(customer)
        return customer

    def _send_welcome(self, card_id: int) -> None:
        try:
            card = db.session.get(Card, card_id)
            customer = card.customer
            self.dispatcher.enqueue(
                customer.id,
                NotificationTemplate.WELCOME,
                {
                    'customerName': customer.name or '',
                    'cardUid': card.uid,
                    'storeName': card.store.name if card.store else '',
                },
                tenant_id=card.tenant_id,
            )
        except Exception as e:
            logger.warning(f'[Cards] Failed to send welcome for card {card_id} (non-blocking): {e}')

    def toggle_block(self, tenant_id: int, card_id: int) -> Card:
        """ACTIVE -> BLOCKED or BLOCKED -> ACTIVE."""
        card = self.get_card(tenant_id, card_id)
        transitions = {
            CardStatus.ACTIVE.value: CardStatus.BLOCKED.value,
            CardStatus.BLOCKED.value: CardStatus.ACTIVE.value,
        }
        current = card.status
        target = transitions.get(current)
        if target is None:
            raise InvalidStatusTransitionError('card', current, CardStatus.BLOCKED.value)

        result = db.session.execute(
            update(Card)
            .where(Card.id == card.id, Card.status == current)
            .values(status=target, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise InvalidStatusTransitionError('card', 'changed concurrently', target)
        db.session.commit()

        logger.info(f'[Cards] Card {card_id} {current} -> {target}')
        db.session.refresh(card)
        return card

    def get_tier_progress(self, tenant_id: int, card_id: int) -> dict:
        card = self.get_card(tenant_id, card_id)
        if not card.customer:
            raise ValidationError('Card is not linked to a customer', field='card')
        rule_set = self.rules.get_rule_set(tenant_id)
        return tier_engine.calculate_tier_progress(
            card.customer.tier,
            card.customer.total_spend_cents,
            rule_set.tier_rules,
        )


# Singleton instance
card_service = CardService()
