"""
Payment Reconciliation.

Turns payment-processor events (Stripe webhooks) and cashier confirmations
into ledger credits, at most once per payment.

Three guards stack up against double credit:

1. processed_webhook_events: the event id is inserted in the same commit as
   the state change, so a redelivered event hits the unique constraint.
2. PENDING -> CONFIRMED is a conditional update; only one caller wins it.
3. The ledger credit carries idempotency_key 'purchase:<id>', so retrying
   a credit can never create a second Transaction row.

The credit runs in its own unit after CONFIRMED is committed. If it fails
the purchase keeps ledger_transaction_id NULL, the error is recorded, and
reconcile_unapplied_credits() retries it until PAYMENT_MAX_CREDIT_ATTEMPTS,
after which it is logged at CRITICAL for manual follow-up.
"""
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import stripe
from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import (
    Card,
    CardStatus,
    PaymentLink,
    PaymentMethod,
    ProcessedWebhookEvent,
    PurchaseKind,
    PurchaseStatus,
    PurchaseTransaction,
    Store,
    SubscriptionStatus,
    Tenant,
    Transaction,
    TransactionCategory,
    TransactionType,
)
from ..utils.exceptions import (
    CardNotActiveError,
    CardNotFoundError,
    DuplicateWebhookEventError,
    ExternalGatewayError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    LedgerError,
    MalformedWebhookError,
    NotFoundError,
    PersistenceError,
    PurchaseNotFoundError,
    ValidationError,
)
from .job_lease import job_lease_service

logger = logging.getLogger(__name__)

RECONCILE_LEASE = 'payment_reconciliation'
GRACE_PERIOD_DAYS = 7

# Stripe subscription.status -> Tenant.subscription_status
STRIPE_SUBSCRIPTION_STATUS = {
    'trialing': SubscriptionStatus.TRIALING.value,
    'active': SubscriptionStatus.ACTIVE.value,
    'past_due': SubscriptionStatus.PAST_DUE.value,
    'canceled': SubscriptionStatus.CANCELED.value,
    'unpaid': SubscriptionStatus.CANCELED.value,
}


@dataclass(frozen=True)
class PaymentEvent:
    """Processor-neutral view of one webhook event."""
    event_id: str
    event_type: str
    external_object_id: Optional[str] = None
    amount_cents: Optional[int] = None
    metadata: dict = field(default_factory=dict)
    data: dict = field(default_factory=dict)

    @classmethod
    def from_stripe(cls, event: dict) -> 'PaymentEvent':
        """
        Build from a Stripe event payload (already signature-verified).

        Raises:
            MalformedWebhookError: required fields missing or of the wrong type
        """
        try:
            event_id = event['id']
            event_type = event['type']
            obj = event['data']['object']
        except (KeyError, TypeError):
            raise MalformedWebhookError('Event is missing id, type or data.object')

        if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str) or not event_type:
            raise MalformedWebhookError('Event id and type must be non-empty strings')
        if not isinstance(obj, dict):
            raise MalformedWebhookError('data.object must be an object')

        amount = None
        for key in ('amount_received', 'amount_total', 'amount_paid', 'amount'):
            if obj.get(key) is not None:
                amount = obj[key]
                break
        if amount is not None and (not isinstance(amount, int) or isinstance(amount, bool)):
            raise MalformedWebhookError(f'Amount must be an integer, got {amount!r}')

        object_id = obj.get('id')
        if object_id is not None and not isinstance(object_id, str):
            raise MalformedWebhookError(f'data.object.id must be a string, got {object_id!r}')

        metadata = obj.get('metadata') or {}
        if not isinstance(metadata, dict):
            raise MalformedWebhookError('metadata must be an object')

        return cls(
            event_id=event_id,
            event_type=event_type,
            external_object_id=object_id,
            amount_cents=amount,
            metadata=dict(metadata),
            data=obj,
        )


class PaymentReconciliationService:
    """Pending purchases, their confirmation, and processor webhooks."""

    def __init__(self, ledger=None):
        self._ledger = ledger

    @property
    def ledger(self):
        if self._ledger is None:
            from .balance_ledger import balance_ledger
            self._ledger = balance_ledger
        return self._ledger

    # ==================== Purchases ====================

    def create_purchase(
        self,
        tenant_id: int,
        card_id: int,
        amount_cents: int,
        payment_method,
        kind=PurchaseKind.PURCHASE,
        category=TransactionCategory.PURCHASE,
        store_id: int = None,
        actor_id: str = None,
        description: str = None,
    ) -> PurchaseTransaction:
        """
        Record a purchase or top-up awaiting payment.

        CASH is confirmed and credited immediately. QR_PAYMENT and CARD get a
        payment link; CARD also gets a Stripe PaymentIntent when Stripe is
        configured.
        """
        if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
            raise InvalidAmountError()
        try:
            method = PaymentMethod(getattr(payment_method, 'value', payment_method))
        except ValueError:
            raise ValidationError(f'Unknown payment method: {payment_method}', field='payment_method')
        try:
            kind = PurchaseKind(getattr(kind, 'value', kind))
        except ValueError:
            raise ValidationError(f'Unknown purchase kind: {kind}', field='kind')
        try:
            category = TransactionCategory(getattr(category, 'value', category))
        except ValueError:
            raise ValidationError(f'Unknown category: {category}', field='category')

        card = Card.query.filter_by(id=card_id, tenant_id=tenant_id).first()
        if not card:
            raise CardNotFoundError(card_id)
        if card.status != CardStatus.ACTIVE.value:
            raise CardNotActiveError(card_id, card.status)
        if store_id is not None:
            store = Store.query.filter_by(id=store_id, tenant_id=tenant_id).first()
            if not store:
                raise NotFoundError('Store', store_id)
            if card.store_id is not None and card.store_id != store.id:
                raise ValidationError(
                    f'Card {card_id} is registered to store {card.store_id}, not store {store_id}',
                    field='store_id',
                )

        purchase = PurchaseTransaction(
            tenant_id=tenant_id,
            card_id=card_id,
            store_id=store_id,
            actor_id=actor_id,
            kind=kind.value,
            category=category.value,
            payment_method=method.value,
            amount_cents=amount_cents,
            description=description,
            status=PurchaseStatus.PENDING.value,
        )
        try:
            db.session.add(purchase)
            db.session.flush()

            if method != PaymentMethod.CASH:
                token = secrets.token_urlsafe(24)
                ttl_hours = current_app.config.get('PAYMENT_LINK_TTL_HOURS', 24)
                frontend = current_app.config.get('FRONTEND_URL', '').rstrip('/')
                db.session.add(PaymentLink(
                    purchase_id=purchase.id,
                    token=token,
                    url=f'{frontend}/pay/{token}',
                    expires_at=datetime.utcnow() + timedelta(hours=ttl_hours),
                ))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError('Could not record purchase', e)

        logger.info(f'[Payments] Purchase {purchase.id} created: {method.value} {amount_cents} on card {card_id}')

        if method == PaymentMethod.CASH:
            return self.confirm_payment(tenant_id, purchase.id, actor_id=actor_id)

        if method == PaymentMethod.CARD and current_app.config.get('STRIPE_SECRET_KEY'):
            self._create_payment_intent(purchase)

        return purchase

    def _create_payment_intent(self, purchase: PurchaseTransaction) -> None:
        stripe.api_key = current_app.config['STRIPE_SECRET_KEY']
        try:
            intent = stripe.PaymentIntent.create(
                amount=purchase.amount_cents,
                currency=current_app.config.get('PAYMENT_CURRENCY', 'usd'),
                metadata={
                    'purchase_id': str(purchase.id),
                    'tenant_id': str(purchase.tenant_id),
                },
            )
        except stripe.StripeError as e:
            self._transition(purchase.id, PurchaseStatus.FAILED, failed_at=datetime.utcnow(), last_error=str(e))
            db.session.commit()
            raise ExternalGatewayError('stripe', str(e), e)

        self.attach_external_id(purchase.tenant_id, purchase.id, intent['id'])

    def attach_external_id(self, tenant_id: int, purchase_id: int, external_id: str) -> PurchaseTransaction:
        """Link a pending purchase to the processor object that will pay it."""
        purchase = self._get_purchase(tenant_id, purchase_id)
        if purchase.external_id == external_id:
            return purchase
        if purchase.external_id:
            raise ValidationError('Purchase already linked to another payment', field='external_id')

        result = db.session.execute(
            update(PurchaseTransaction)
            .where(
                PurchaseTransaction.id == purchase_id,
                PurchaseTransaction.status == PurchaseStatus.PENDING.value,
                PurchaseTransaction.external_id.is_(None),
            )
            .values(external_id=external_id, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ValidationError('External payment id already in use', field='external_id')
        if result.rowcount != 1:
            db.session.refresh(purchase)
            raise InvalidStatusTransitionError('purchase', purchase.status, 'linked')

        db.session.refresh(purchase)
        return purchase

    def confirm_payment(self, tenant_id: int, purchase_id: int, actor_id: str = None) -> PurchaseTransaction:
        """Cashier confirmation of a pending payment; credits the card."""
        purchase = self._get_purchase(tenant_id, purchase_id)
        if purchase.status != PurchaseStatus.PENDING.value:
            raise InvalidStatusTransitionError('purchase', purchase.status, PurchaseStatus.CONFIRMED.value)

        if not self._transition(purchase_id, PurchaseStatus.CONFIRMED, confirmed_at=datetime.utcnow()):
            db.session.rollback()
            db.session.refresh(purchase)
            raise InvalidStatusTransitionError('purchase', purchase.status, PurchaseStatus.CONFIRMED.value)
        db.session.commit()

        logger.info(f'[Payments] Purchase {purchase_id} confirmed by {actor_id or "cashier"}')
        self._apply_credit(purchase_id)

        db.session.refresh(purchase)
        return purchase

    def _get_purchase(self, tenant_id: int, purchase_id: int) -> PurchaseTransaction:
        purchase = PurchaseTransaction.query.filter_by(id=purchase_id, tenant_id=tenant_id).first()
        if not purchase:
            raise PurchaseNotFoundError(purchase_id)
        return purchase

    def _transition(self, purchase_id: int, to_status: PurchaseStatus, **values) -> bool:
        """PENDING -> to_status. True only for the caller that made the change."""
        result = db.session.execute(
            update(PurchaseTransaction)
            .where(
                PurchaseTransaction.id == purchase_id,
                PurchaseTransaction.status == PurchaseStatus.PENDING.value,
            )
            .values(status=to_status.value, updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ==================== Ledger credit ====================

    def _apply_credit(self, purchase_id: int):
        """
        Credit a CONFIRMED purchase to its card. Returns the Transaction or
        None if the credit failed (recorded on the purchase for the sweep).
        """
        purchase = PurchaseTransaction.query.filter_by(id=purchase_id).populate_existing().first()
        if purchase is None or purchase.status != PurchaseStatus.CONFIRMED.value:
            return None
        if purchase.ledger_transaction_id:
            return db.session.get(Transaction, purchase.ledger_transaction_id)

        txn_type = TransactionType.EARN if purchase.kind == PurchaseKind.PURCHASE.value else TransactionType.ADD_FUNDS
        note = purchase.description or f'{purchase.payment_method} payment #{purchase.id}'

        try:
            txn = self.ledger.apply_transaction(
                card_id=purchase.card_id,
                txn_type=txn_type,
                amount_cents=purchase.amount_cents,
                category=purchase.category,
                store_id=purchase.store_id,
                actor_id=purchase.actor_id or 'system:payments',
                note=note,
                idempotency_key=purchase.idempotency_key,
                tenant_id=purchase.tenant_id,
            )
        except LedgerError as e:
            self._record_credit_failure(purchase_id, e.message)
            return None

        now = datetime.utcnow()
        db.session.execute(
            update(PurchaseTransaction)
            .where(PurchaseTransaction.id == purchase_id, PurchaseTransaction.ledger_transaction_id.is_(None))
            .values(ledger_transaction_id=txn.id, last_error=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(
            update(PaymentLink)
            .where(PaymentLink.purchase_id == purchase_id, PaymentLink.used_at.is_(None))
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

        logger.info(f'[Payments] Purchase {purchase_id} credited as transaction {txn.id}')
        return txn

    def _record_credit_failure(self, purchase_id: int, error: str) -> None:
        max_attempts = current_app.config.get('PAYMENT_MAX_CREDIT_ATTEMPTS', 5)
        db.session.execute(
            update(PurchaseTransaction)
            .where(PurchaseTransaction.id == purchase_id)
            .values(
                credit_attempts=PurchaseTransaction.credit_attempts + 1,
                last_error=error,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

        attempts = db.session.query(PurchaseTransaction.credit_attempts).filter_by(id=purchase_id).scalar()
        if attempts >= max_attempts:
            logger.critical(
                f'[Payments] Purchase {purchase_id} is CONFIRMED but its credit failed {attempts} times; '
                f'manual reconciliation required. Last error: {error}'
            )
        else:
            logger.error(f'[Payments] Credit for purchase {purchase_id} failed (attempt {attempts}): {error}')

    def reconcile_unapplied_credits(self) -> dict:
        """Retry credits for CONFIRMED purchases that have no ledger transaction yet."""
        max_attempts = current_app.config.get('PAYMENT_MAX_CREDIT_ATTEMPTS', 5)
        stats = {'skipped': False, 'checked': 0, 'credited': 0, 'failed': 0}

        with job_lease_service.lease(RECONCILE_LEASE) as holder:
            if not holder:
                stats['skipped'] = True
                return stats

            purchase_ids = [
                row.id for row in (
                    db.session.query(PurchaseTransaction.id)
                    .filter(
                        PurchaseTransaction.status == PurchaseStatus.CONFIRMED.value,
                        PurchaseTransaction.ledger_transaction_id.is_(None),
                        PurchaseTransaction.credit_attempts < max_attempts,
                    )
                    .order_by(PurchaseTransaction.confirmed_at.asc())
                    .all()
                )
            ]

            for purchase_id in purchase_ids:
                stats['checked'] += 1
                if self._apply_credit(purchase_id):
                    stats['credited'] += 1
                else:
                    stats['failed'] += 1

        logger.info(f'[Payments] Reconciliation: {stats}')
        return stats

    def expire_stale_payments(self, now: datetime = None) -> int:
        """PENDING purchases whose payment link has expired become FAILED."""
        now = now or datetime.utcnow()
        stale_ids = [
            row.id for row in (
                db.session.query(PurchaseTransaction.id)
                .join(PaymentLink, PaymentLink.purchase_id == PurchaseTransaction.id)
                .filter(
                    PurchaseTransaction.status == PurchaseStatus.PENDING.value,
                    PaymentLink.expires_at < now,
                )
                .all()
            )
        ]

        expired = 0
        for purchase_id in stale_ids:
            if self._transition(purchase_id, PurchaseStatus.FAILED, failed_at=now, last_error='Payment link expired'):
                expired += 1
        db.session.commit()

        if expired:
            logger.info(f'[Payments] Expired {expired} stale payments')
        return expired

    # ==================== Webhooks ====================

    def handle_event(self, event: PaymentEvent) -> dict:
        """
        Apply one processor event.

        A redelivered event id is a successful no-op. Storage failures raise
        PersistenceError so the endpoint can ask the processor to retry.
        """
        handlers = {
            'payment_intent.succeeded': self._handle_payment_succeeded,
            'checkout.session.completed': self._handle_checkout_completed,
            'payment_intent.payment_failed': self._handle_payment_failed,
            'payment_intent.canceled': self._handle_payment_failed,
            'checkout.session.expired': self._handle_payment_failed,
            'customer.subscription.created': self._handle_subscription_updated,
            'customer.subscription.updated': self._handle_subscription_updated,
            'customer.subscription.deleted': self._handle_subscription_deleted,
            'invoice.payment_succeeded': self._handle_invoice_paid,
            'invoice.paid': self._handle_invoice_paid,
            'invoice.payment_failed': self._handle_invoice_failed,
        }

        handler = handlers.get(event.event_type)
        if not handler:
            return {'handled': False, 'event_type': event.event_type}

        try:
            self._record_event(event)
            return handler(event)
        except DuplicateWebhookEventError:
            logger.info(f'[Payments] Event {event.event_id} already processed, ignoring')
            return {'handled': True, 'duplicate': True, 'event_type': event.event_type}
        except LedgerError:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f'[Payments] Storage error handling {event.event_type} {event.event_id}: {e}')
            raise PersistenceError(f'Could not process event {event.event_id}', e)

    def _record_event(self, event: PaymentEvent) -> None:
        """Insert the event id; it commits together with the handler's state change."""
        db.session.add(ProcessedWebhookEvent(event_id=event.event_id, event_type=event.event_type))
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateWebhookEventError(event.event_id)

    def _find_purchase(self, event: PaymentEvent) -> Optional[PurchaseTransaction]:
        candidates = [
            c for c in (event.external_object_id, event.data.get('payment_intent'))
            if c and isinstance(c, str)
        ]
        if candidates:
            purchase = PurchaseTransaction.query.filter(PurchaseTransaction.external_id.in_(candidates)).first()
            if purchase:
                return purchase

        purchase_id = event.metadata.get('purchase_id')
        if purchase_id is None:
            return None
        try:
            purchase_id = int(purchase_id)
        except (TypeError, ValueError):
            raise MalformedWebhookError(f'Invalid purchase_id in metadata: {purchase_id!r}')

        purchase = db.session.get(PurchaseTransaction, purchase_id)
        if purchase is None:
            return None
        tenant_id = event.metadata.get('tenant_id')
        if tenant_id is not None and str(purchase.tenant_id) != str(tenant_id):
            raise MalformedWebhookError(f'Purchase {purchase_id} does not belong to tenant {tenant_id}')
        if purchase.external_id is None and event.external_object_id:
            purchase.external_id = event.external_object_id
        return purchase

    def _handle_payment_succeeded(self, event: PaymentEvent) -> dict:
        purchase = self._find_purchase(event)
        if purchase is None:
            db.session.commit()
            logger.warning(f'[Payments] {event.event_type} for unknown payment {event.external_object_id}')
            return {'handled': False, 'error': 'Unknown payment'}

        if purchase.is_terminal:
            db.session.commit()
            logger.info(f'[Payments] {event.event_type} for purchase {purchase.id} already {purchase.status}')
            return {'handled': True, 'purchase_id': purchase.id, 'status': purchase.status, 'noop': True}

        if event.amount_cents is not None and event.amount_cents != purchase.amount_cents:
            db.session.commit()
            logger.error(
                f'[Payments] Amount mismatch on purchase {purchase.id}: expected {purchase.amount_cents}, '
                f'processor reported {event.amount_cents}. Left PENDING for review.'
            )
            return {'handled': False, 'purchase_id': purchase.id, 'error': 'Amount mismatch'}

        confirmed = self._transition(purchase.id, PurchaseStatus.CONFIRMED, confirmed_at=datetime.utcnow())
        db.session.commit()

        if not confirmed:
            db.session.refresh(purchase)
            return {'handled': True, 'purchase_id': purchase.id, 'status': purchase.status, 'noop': True}

        txn = self._apply_credit(purchase.id)
        return {
            'handled': True,
            'purchase_id': purchase.id,
            'status': PurchaseStatus.CONFIRMED.value,
            'credited': txn is not None,
        }

    def _handle_checkout_completed(self, event: PaymentEvent) -> dict:
        if event.data.get('mode') == 'subscription':
            return self._activate_subscription_from_checkout(event)
        return self._handle_payment_succeeded(event)

    def _handle_payment_failed(self, event: PaymentEvent) -> dict:
        purchase = self._find_purchase(event)
        if purchase is None:
            db.session.commit()
            return {'handled': False, 'error': 'Unknown payment'}

        error = (event.data.get('last_payment_error') or {}).get('message') or event.event_type
        failed = self._transition(purchase.id, PurchaseStatus.FAILED, failed_at=datetime.utcnow(), last_error=error)
        db.session.commit()

        if failed:
            logger.info(f'[Payments] Purchase {purchase.id} failed: {error}')
        db.session.refresh(purchase)
        return {'handled': True, 'purchase_id': purchase.id, 'status': purchase.status, 'noop': not failed}

    # ==================== Subscription events ====================

    def _find_tenant(self, event: PaymentEvent, subscription_id: str = None) -> Optional[Tenant]:
        tenant_id = event.metadata.get('tenant_id')
        if tenant_id is not None:
            try:
                return db.session.get(Tenant, int(tenant_id))
            except (TypeError, ValueError):
                raise MalformedWebhookError(f'Invalid tenant_id in metadata: {tenant_id!r}')
        if subscription_id:
            tenant = Tenant.query.filter_by(stripe_subscription_id=subscription_id).first()
            if tenant:
                return tenant
        customer_id = event.data.get('customer')
        if customer_id:
            return Tenant.query.filter_by(stripe_customer_id=customer_id).first()
        return None

    def _activate_subscription_from_checkout(self, event: PaymentEvent) -> dict:
        tenant = self._find_tenant(event, event.data.get('subscription'))
        if tenant is None:
            db.session.commit()
            return {'handled': False, 'error': 'Tenant not found'}

        tenant.stripe_customer_id = event.data.get('customer') or tenant.stripe_customer_id
        tenant.stripe_subscription_id = event.data.get('subscription') or tenant.stripe_subscription_id
        tenant.subscription_status = SubscriptionStatus.ACTIVE.value
        tenant.grace_ends_at = None
        db.session.commit()

        logger.info(f'[Payments] Tenant {tenant.id} subscription activated via checkout')
        return {'handled': True, 'tenant_id': tenant.id, 'subscription_status': tenant.subscription_status}

    def _handle_subscription_updated(self, event: PaymentEvent) -> dict:
        tenant = self._find_tenant(event, event.external_object_id)
        if tenant is None:
            db.session.commit()
            return {'handled': False, 'error': 'Tenant not found'}

        stripe_status = event.data.get('status')
        status = STRIPE_SUBSCRIPTION_STATUS.get(stripe_status, SubscriptionStatus.NONE.value)

        tenant.subscription_status = status
        tenant.stripe_subscription_id = event.external_object_id or tenant.stripe_subscription_id
        tenant.stripe_customer_id = event.data.get('customer') or tenant.stripe_customer_id
        if status == SubscriptionStatus.PAST_DUE.value:
            period_end = event.data.get('current_period_end')
            base = datetime.utcfromtimestamp(period_end) if isinstance(period_end, int) else datetime.utcnow()
            tenant.grace_ends_at = base + timedelta(days=GRACE_PERIOD_DAYS)
        else:
            tenant.grace_ends_at = None
        db.session.commit()

        logger.info(f'[Payments] Tenant {tenant.id} subscription {stripe_status} -> {status}')
        return {'handled': True, 'tenant_id': tenant.id, 'subscription_status': status}

    def _handle_subscription_deleted(self, event: PaymentEvent) -> dict:
        tenant = self._find_tenant(event, event.external_object_id)
        if tenant is None:
            db.session.commit()
            return {'handled': False, 'error': 'Tenant not found'}

        tenant.subscription_status = SubscriptionStatus.CANCELED.value
        tenant.grace_ends_at = None
        db.session.commit()

        logger.info(f'[Payments] Tenant {tenant.id} subscription canceled')
        return {'handled': True, 'tenant_id': tenant.id, 'subscription_status': tenant.subscription_status}

    def _handle_invoice_paid(self, event: PaymentEvent) -> dict:
        tenant = self._find_tenant(event, event.data.get('subscription'))
        if tenant is None:
            db.session.commit()
            return {'handled': False, 'error': 'Tenant not found'}

        tenant.subscription_status = SubscriptionStatus.ACTIVE.value
        tenant.grace_ends_at = None
        db.session.commit()

        logger.info(f'[Payments] Invoice paid for tenant {tenant.id}')
        return {'handled': True, 'tenant_id': tenant.id, 'subscription_status': tenant.subscription_status}

    def _handle_invoice_failed(self, event: PaymentEvent) -> dict:
        tenant = self._find_tenant(event, event.data.get('subscription'))
        if tenant is None:
            db.session.commit()
            return {'handled': False, 'error': 'Tenant not found'}

        tenant.subscription_status = SubscriptionStatus.PAST_DUE.value
        tenant.grace_ends_at = datetime.utcnow() + timedelta(days=GRACE_PERIOD_DAYS)
        db.session.commit()

        logger.warning(f'[Payments] Invoice payment failed for tenant {tenant.id}, grace until {tenant.grace_ends_at}')
        return {'handled': True, 'tenant_id': tenant.id, 'subscription_status': tenant.subscription_status}


# Singleton instance
payment_reconciliation = PaymentReconciliationService()
