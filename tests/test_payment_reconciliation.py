"""
Tests for pending purchases, cashier confirmation and processor events.
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import patch


def stripe_event(event_id, event_type, obj):
    return {'id': event_id, 'type': event_type, 'data': {'object': obj}}


def intent_succeeded(event_id, purchase, amount=None, intent_id='pi_test_1'):
    return stripe_event(event_id, 'payment_intent.succeeded', {
        'id': intent_id,
        'object': 'payment_intent',
        'amount_received': purchase.amount_cents if amount is None else amount,
        'metadata': {'purchase_id': str(purchase.id), 'tenant_id': str(purchase.tenant_id)},
    })


class TestCreatePurchase:

    def test_cash_purchase_is_credited_immediately(self, app, sample_tenant, sample_store, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Card, Transaction
            from cardledger.services.payment_reconciliation import payment_reconciliation

            purchase = payment_reconciliation.create_purchase(
                sample_tenant.id, active_card.id, 10000, 'CASH', store_id=sample_store.id, actor_id='staff:1',
            )

            assert purchase.status == 'CONFIRMED'
            assert purchase.confirmed_at is not None
            assert purchase.ledger_transaction_id is not None
            assert purchase.payment_link is None

            txn = db.session.get(Transaction, purchase.ledger_transaction_id)
            assert txn.type == 'EARN'
            assert txn.amount_cents == 10000
            assert txn.cashback_cents == 500
            assert txn.idempotency_key == f'purchase:{purchase.id}'
            assert db.session.get(Card, active_card.id).balance_cents == 500

    def test_cash_top_up_adds_full_amount(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Card, Transaction
            from cardledger.services.payment_reconciliation import payment_reconciliation

            purchase = payment_reconciliation.create_purchase(
                sample_tenant.id, active_card.id, 2500, 'CASH', kind='TOP_UP',
            )

            txn = db.session.get(Transaction, purchase.ledger_transaction_id)
            assert txn.type == 'ADD_FUNDS'
            assert db.session.get(Card, active_card.id).balance_cents == 2500

    def test_qr_purchase_waits_with_payment_link(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Card
            from cardledger.services.payment_reconciliation import payment_reconciliation

            purchase = payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, 10000, 'QR_PAYMENT')

            assert purchase.status == 'PENDING'
            assert purchase.ledger_transaction_id is None
            link = purchase.payment_link
            assert link.url == f'http://localhost:3000/pay/{link.token}'
            assert link.expires_at > datetime.utcnow() + timedelta(hours=23)
            assert db.session.get(Card, active_card.id).balance_cents == 0

    def test_card_payment_creates_payment_intent(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.services.payment_reconciliation import payment_reconciliation

            app.config['STRIPE_SECRET_KEY'] = 'sk_test_123'

            with patch('cardledger.services.payment_reconciliation.stripe.PaymentIntent.create',
                       return_value={'id': 'pi_created_1'}) as mock_create:
                purchase = payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, 4200, 'CARD')

            assert purchase.status == 'PENDING'
            assert purchase.external_id == 'pi_created_1'
            kwargs = mock_create.call_args.kwargs
            assert kwargs['amount'] == 4200
            assert kwargs['currency'] == 'usd'
            assert kwargs['metadata'] == {'purchase_id': str(purchase.id), 'tenant_id': str(sample_tenant.id)}

    def test_card_payment_intent_error_fails_purchase(self, app, sample_tenant, active_card):
        import stripe

        with app.app_context():
            from cardledger.models import PurchaseTransaction
            from cardledger.services.payment_reconciliation import payment_reconciliation
            from cardledger.utils.exceptions import ExternalGatewayError

            app.config['STRIPE_SECRET_KEY'] = 'sk_test_123'

            with patch('cardledger.services.payment_reconciliation.stripe.PaymentIntent.create',
                       side_effect=stripe.StripeError('Your card was declined')):
                with pytest.raises(ExternalGatewayError):
                    payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, 4200, 'CARD')

            purchase = PurchaseTransaction.query.one()
            assert purchase.status == 'FAILED'
            assert 'declined' in purchase.last_error

    def test_card_payment_without_stripe_is_left_pending(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.services.payment_reconciliation import payment_reconciliation

            app.config['STRIPE_SECRET_KEY'] = None
            purchase = payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, 4200, 'CARD')

            assert purchase.status == 'PENDING'
            assert purchase.external_id is None
            assert purchase.payment_link is not None

    @pytest.mark.parametrize('amount', [0, -5, 12.5, True, None])
    def test_invalid_amount(self, app, sample_tenant, active_card, amount):
        with app.app_context():
            from cardledger.services.payment_reconciliation import payment_reconciliation
            from cardledger.utils.exceptions import InvalidAmountError

            with pytest.raises(InvalidAmountError):
                payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, amount, 'CASH')

    def test_unknown_payment_method(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.services.payment_reconciliation import payment_reconciliation
            from cardledger.utils.exceptions import ValidationError

            with pytest.raises(ValidationError):
                payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, 100, 'BITCOIN')

    def test_card_must_be_active(self, app, sample_tenant, unassigned_card):
        with app.app_context():
            from cardledger.services.payment_reconciliation import payment_reconciliation
            from cardledger.utils.exceptions import CardNotActiveError

            with pytest.raises(CardNotActiveError):
                payment_reconciliation.create_purchase(sample_tenant.id, unassigned_card.id, 100, 'CASH')

    def test_store_must_match_card(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import PurchaseTransaction, Store
            from cardledger.services.payment_reconciliation import payment_reconciliation
            from cardledger.utils.exceptions import ValidationError

            uptown = Store(tenant_id=sample_tenant.id, name='Uptown')
            db.session.add(uptown)
            db.session.commit()

            with pytest.raises(ValidationError):
                payment_reconciliation.create_purchase(
                    sample_tenant.id, active_card.id, 10000, 'QR_PAYMENT', store_id=uptown.id,
                )

            assert PurchaseTransaction.query.count() == 0


class TestConfirmPayment:

    def test_confirm_credits_once(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Card, PaymentLink
            from cardledger.services.payment_reconciliation import payment_reconciliation
            from cardledger.utils.exceptions import InvalidStatusTransitionError

            pending = payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, 10000, 'QR_PAYMENT')

            confirmed = payment_reconciliation.confirm_payment(sample_tenant.id, pending.id, actor_id='staff:1')
            assert confirmed.status == 'CONFIRMED'
            assert confirmed.ledger_transaction_id is not None
            assert PaymentLink.query.filter_by(purchase_id=pending.id).one().used_at is not None

            with pytest.raises(InvalidStatusTransitionError):
                payment_reconciliation.confirm_payment(sample_tenant.id, pending.id)

            assert db.session.get(Card, active_card.id).balance_cents == 500

    def test_confirm_other_tenants_purchase(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.services.payment_reconciliation import payment_reconciliation
            from cardledger.utils.exceptions import PurchaseNotFoundError

            pending = payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, 10000, 'QR_PAYMENT')

            with pytest.raises(PurchaseNotFoundError):
                payment_reconciliation.confirm_payment(sample_tenant.id + 1, pending.id)

    def test_failed_credit_is_retried_by_reconciliation(self, app, sample_tenant, active_card):
        """Card blocked between checkout and confirmation: CONFIRMED is kept, the credit is owed."""
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Card, PurchaseTransaction, Transaction
            from cardledger.services.card_service import card_service
            from cardledger.services.payment_reconciliation import payment_reconciliation

            pending = payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, 10000, 'QR_PAYMENT')
            card_service.toggle_block(sample_tenant.id, active_card.id)

            purchase = payment_reconciliation.confirm_payment(sample_tenant.id, pending.id)

            assert purchase.status == 'CONFIRMED'
            assert purchase.ledger_transaction_id is None
            assert purchase.credit_attempts == 1
            assert 'not active' in purchase.last_error

            # Still blocked: sweep fails again
            stats = payment_reconciliation.reconcile_unapplied_credits()
            assert stats == {'skipped': False, 'checked': 1, 'credited': 0, 'failed': 1}

            card_service.toggle_block(sample_tenant.id, active_card.id)
            stats = payment_reconciliation.reconcile_unapplied_credits()
            assert stats == {'skipped': False, 'checked': 1, 'credited': 1, 'failed': 0}

            purchase = db.session.get(PurchaseTransaction, pending.id)
            assert purchase.ledger_transaction_id is not None
            assert purchase.last_error is None
            assert db.session.get(Card, active_card.id).balance_cents == 500

            # Nothing left owed
            assert payment_reconciliation.reconcile_unapplied_credits()['checked'] == 0
            assert Transaction.query.filter_by(card_id=active_card.id).count() == 1

    def test_reconciliation_gives_up_after_max_attempts(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import PurchaseTransaction
            from cardledger.services.card_service import card_service
            from cardledger.services.payment_reconciliation import payment_reconciliation

            pending = payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, 10000, 'QR_PAYMENT')
            card_service.toggle_block(sample_tenant.id, active_card.id)
            payment_reconciliation.confirm_payment(sample_tenant.id, pending.id)

            purchase = db.session.get(PurchaseTransaction, pending.id)
            purchase.credit_attempts = app.config['PAYMENT_MAX_CREDIT_ATTEMPTS']
            db.session.commit()

            assert payment_reconciliation.reconcile_unapplied_credits()['checked'] == 0


class TestExpireStalePayments:

    def test_expired_links_fail_pending_purchases(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import PurchaseTransaction
            from cardledger.services.payment_reconciliation import payment_reconciliation

            stale = payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, 1000, 'QR_PAYMENT')
            paid = payment_reconciliation.create_purchase(sample_tenant.id, active_card.id, 2000, 'QR_PAYMENT')
            payment_reconciliation.confirm_payment(sample_tenant.id, paid.id)

            assert payment_reconciliation.expire_stale_payments() == 0

            expired = payment_reconciliation.expire_stale_payments(now=datetime.utcnow() + timedelta(hours=25))

            assert expired == 1
            stale = db.session.get(PurchaseTransaction, stale.id)
            assert stale.status == 'FAILED'
            assert stale.last_error == 'Payment link expired'
            assert db.session.get(PurchaseTransaction, paid.id).status == 'CONFIRMED'


class TestPaymentEvent:

    def test_from_stripe(self):
        from cardledger.services.payment_reconciliation import PaymentEvent

        event = PaymentEvent.from_stripe(stripe_event('evt_1', 'payment_intent.succeeded', {
            'id': 'pi_1', 'amount_received': 1500, 'metadata': {'purchase_id': '7'},
        }))

        assert event.event_id == 'evt_1'
        assert event.external_object_id == 'pi_1'
        assert event.amount_cents == 1500
        assert event.metadata == {'purchase_id': '7'}

    def test_checkout_amount_total(self):
        from cardledger.services.payment_reconciliation import PaymentEvent

        event = PaymentEvent.from_stripe(stripe_event('evt_2', 'checkout.session.completed', {
            'id': 'cs_1', 'amount_total': 800,
        }))
        assert event.amount_cents == 800
        assert event.metadata == {}

    @pytest.mark.parametrize('payload', [
        {},
        {'id': 'evt_1', 'type': 'payment_intent.succeeded'},
        {'id': '', 'type': 'payment_intent.succeeded', 'data': {'object': {}}},
        {'id': 'evt_1', 'type': 'payment_intent.succeeded', 'data': {'object': 'pi_1'}},
        {'id': 'evt_1', 'type': 'payment_intent.succeeded', 'data': {'object': {'amount_received': '1500'}}},
        {'id': 'evt_1', 'type': 'payment_intent.succeeded', 'data': {'object': {'metadata': ['x']}}},
        {'id': 'evt_1', 'type': 'payment_intent.succeeded', 'data': {'object': {'id': 12345}}},
        [],
    ])
    def test_malformed_events(self, payload):
        from cardledger.services.payment_reconciliation import PaymentEvent
        from cardledger.utils.exceptions import MalformedWebhookError

        with pytest.raises(MalformedWebhookError):
            PaymentEvent.from_stripe(payload)


class TestHandleEvent:

    def _pending(self, tenant_id, card_id, amount=10000):
        from cardledger.services.payment_reconciliation import payment_reconciliation
        return payment_reconciliation.create_purchase(tenant_id, card_id, amount, 'QR_PAYMENT')

    def test_payment_succeeded_credits_card(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Card, PurchaseTransaction
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            pending = self._pending(sample_tenant.id, active_card.id)

            result = payment_reconciliation.handle_event(PaymentEvent.from_stripe(intent_succeeded('evt_1', pending)))

            assert result['handled'] is True
            assert result['credited'] is True
            purchase = db.session.get(PurchaseTransaction, pending.id)
            assert purchase.status == 'CONFIRMED'
            assert purchase.external_id == 'pi_test_1'
            assert db.session.get(Card, active_card.id).balance_cents == 500

    def test_redelivered_event_is_ignored(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Card, ProcessedWebhookEvent, Transaction
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            pending = self._pending(sample_tenant.id, active_card.id)
            event = PaymentEvent.from_stripe(intent_succeeded('evt_dup', pending))

            first = payment_reconciliation.handle_event(event)
            second = payment_reconciliation.handle_event(event)

            assert first['credited'] is True
            assert second == {'handled': True, 'duplicate': True, 'event_type': 'payment_intent.succeeded'}
            assert db.session.get(Card, active_card.id).balance_cents == 500
            assert Transaction.query.filter_by(card_id=active_card.id).count() == 1
            assert ProcessedWebhookEvent.query.filter_by(event_id='evt_dup').count() == 1

    def test_second_event_for_confirmed_purchase_is_noop(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Card
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            pending = self._pending(sample_tenant.id, active_card.id)
            payment_reconciliation.confirm_payment(sample_tenant.id, pending.id)

            result = payment_reconciliation.handle_event(PaymentEvent.from_stripe(intent_succeeded('evt_late', pending)))

            assert result['noop'] is True
            assert result['status'] == 'CONFIRMED'
            assert db.session.get(Card, active_card.id).balance_cents == 500

    def test_event_for_failed_purchase_is_noop(self, app, sample_tenant, active_card):
        """A late success for a purchase already FAILED is acknowledged without crediting."""
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Card, PurchaseTransaction
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            pending = self._pending(sample_tenant.id, active_card.id)
            db.session.get(PurchaseTransaction, pending.id).status = 'FAILED'
            db.session.commit()

            event = intent_succeeded('evt_after_fail', pending, amount=1)
            result = payment_reconciliation.handle_event(PaymentEvent.from_stripe(event))

            assert result == {'handled': True, 'purchase_id': pending.id, 'status': 'FAILED', 'noop': True}
            assert db.session.get(Card, active_card.id).balance_cents == 0

    def test_amount_mismatch_left_pending(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Card, PurchaseTransaction
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            pending = self._pending(sample_tenant.id, active_card.id)

            result = payment_reconciliation.handle_event(
                PaymentEvent.from_stripe(intent_succeeded('evt_short', pending, amount=9999))
            )

            assert result['handled'] is False
            assert result['error'] == 'Amount mismatch'
            assert db.session.get(PurchaseTransaction, pending.id).status == 'PENDING'
            assert db.session.get(Card, active_card.id).balance_cents == 0

    def test_matched_by_external_id(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import PurchaseTransaction
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            pending = self._pending(sample_tenant.id, active_card.id)
            payment_reconciliation.attach_external_id(sample_tenant.id, pending.id, 'pi_known')

            event = stripe_event('evt_ext', 'payment_intent.succeeded', {'id': 'pi_known', 'amount_received': 10000})
            result = payment_reconciliation.handle_event(PaymentEvent.from_stripe(event))

            assert result['credited'] is True
            assert db.session.get(PurchaseTransaction, pending.id).status == 'CONFIRMED'

    def test_unknown_payment(self, app, sample_tenant):
        with app.app_context():
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            event = stripe_event('evt_x', 'payment_intent.succeeded', {
                'id': 'pi_nobody', 'amount_received': 100, 'metadata': {'purchase_id': '999'},
            })
            result = payment_reconciliation.handle_event(PaymentEvent.from_stripe(event))

            assert result == {'handled': False, 'error': 'Unknown payment'}

    def test_invalid_purchase_id_in_metadata(self, app, sample_tenant):
        with app.app_context():
            from cardledger.models import ProcessedWebhookEvent
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent
            from cardledger.utils.exceptions import MalformedWebhookError

            event = stripe_event('evt_bad', 'payment_intent.succeeded', {
                'id': 'pi_bad', 'metadata': {'purchase_id': 'abc'},
            })

            with pytest.raises(MalformedWebhookError):
                payment_reconciliation.handle_event(PaymentEvent.from_stripe(event))

            assert ProcessedWebhookEvent.query.count() == 0

    def test_purchase_from_other_tenant_rejected(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent
            from cardledger.utils.exceptions import MalformedWebhookError

            pending = self._pending(sample_tenant.id, active_card.id)
            event = stripe_event('evt_t', 'payment_intent.succeeded', {
                'id': 'pi_t',
                'amount_received': 10000,
                'metadata': {'purchase_id': str(pending.id), 'tenant_id': str(sample_tenant.id + 1)},
            })

            with pytest.raises(MalformedWebhookError):
                payment_reconciliation.handle_event(PaymentEvent.from_stripe(event))

    def test_payment_failed(self, app, sample_tenant, active_card):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import PurchaseTransaction
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            pending = self._pending(sample_tenant.id, active_card.id)
            event = stripe_event('evt_fail', 'payment_intent.payment_failed', {
                'id': 'pi_fail',
                'metadata': {'purchase_id': str(pending.id)},
                'last_payment_error': {'message': 'Your card was declined.'},
            })

            result = payment_reconciliation.handle_event(PaymentEvent.from_stripe(event))

            assert result['status'] == 'FAILED'
            purchase = db.session.get(PurchaseTransaction, pending.id)
            assert purchase.status == 'FAILED'
            assert purchase.last_error == 'Your card was declined.'

    def test_unhandled_event_type(self, app):
        with app.app_context():
            from cardledger.models import ProcessedWebhookEvent
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            event = PaymentEvent.from_stripe(stripe_event('evt_c', 'customer.created', {'id': 'cus_1'}))

            assert payment_reconciliation.handle_event(event) == {'handled': False, 'event_type': 'customer.created'}
            assert ProcessedWebhookEvent.query.count() == 0


class TestSubscriptionEvents:

    def _link_subscription(self, tenant_id):
        from cardledger.extensions import db
        from cardledger.models import Tenant

        tenant = db.session.get(Tenant, tenant_id)
        tenant.stripe_customer_id = 'cus_pixel'
        tenant.stripe_subscription_id = 'sub_pixel'
        tenant.subscription_status = 'ACTIVE'
        db.session.commit()

    def test_checkout_activates_subscription(self, app, sample_tenant):
        with app.app_context():
            from cardledger.models import Tenant
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            event = stripe_event('evt_co', 'checkout.session.completed', {
                'id': 'cs_1',
                'mode': 'subscription',
                'customer': 'cus_new',
                'subscription': 'sub_new',
                'metadata': {'tenant_id': str(sample_tenant.id)},
            })

            result = payment_reconciliation.handle_event(PaymentEvent.from_stripe(event))

            assert result['subscription_status'] == 'ACTIVE'
            tenant = Tenant.query.get(sample_tenant.id)
            assert tenant.stripe_customer_id == 'cus_new'
            assert tenant.stripe_subscription_id == 'sub_new'
            assert tenant.is_subscribed

    def test_invoice_failure_starts_grace_period(self, app, sample_tenant):
        with app.app_context():
            from cardledger.models import Tenant
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            self._link_subscription(sample_tenant.id)
            event = stripe_event('evt_inv', 'invoice.payment_failed', {
                'id': 'in_1', 'subscription': 'sub_pixel', 'customer': 'cus_pixel', 'amount_due': 4900,
            })

            payment_reconciliation.handle_event(PaymentEvent.from_stripe(event))

            tenant = Tenant.query.get(sample_tenant.id)
            assert tenant.subscription_status == 'PAST_DUE'
            assert tenant.grace_ends_at > datetime.utcnow() + timedelta(days=6)

    def test_invoice_paid_clears_grace(self, app, sample_tenant):
        with app.app_context():
            from cardledger.extensions import db
            from cardledger.models import Tenant
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            self._link_subscription(sample_tenant.id)
            tenant = db.session.get(Tenant, sample_tenant.id)
            tenant.subscription_status = 'PAST_DUE'
            tenant.grace_ends_at = datetime.utcnow() + timedelta(days=3)
            db.session.commit()

            event = stripe_event('evt_paid', 'invoice.paid', {'id': 'in_2', 'subscription': 'sub_pixel'})
            payment_reconciliation.handle_event(PaymentEvent.from_stripe(event))

            tenant = db.session.get(Tenant, sample_tenant.id)
            assert tenant.subscription_status == 'ACTIVE'
            assert tenant.grace_ends_at is None

    def test_subscription_updated_past_due_uses_period_end(self, app, sample_tenant):
        with app.app_context():
            from cardledger.models import Tenant
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            self._link_subscription(sample_tenant.id)
            period_end = datetime(2026, 3, 1)
            event = stripe_event('evt_upd', 'customer.subscription.updated', {
                'id': 'sub_pixel',
                'status': 'past_due',
                'customer': 'cus_pixel',
                'current_period_end': int((period_end - datetime(1970, 1, 1)).total_seconds()),
            })

            payment_reconciliation.handle_event(PaymentEvent.from_stripe(event))

            tenant = Tenant.query.get(sample_tenant.id)
            assert tenant.subscription_status == 'PAST_DUE'
            assert tenant.grace_ends_at == period_end + timedelta(days=7)

    def test_subscription_deleted(self, app, sample_tenant):
        with app.app_context():
            from cardledger.models import Tenant
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            self._link_subscription(sample_tenant.id)
            event = stripe_event('evt_del', 'customer.subscription.deleted', {'id': 'sub_pixel', 'status': 'canceled'})

            result = payment_reconciliation.handle_event(PaymentEvent.from_stripe(event))

            assert result['subscription_status'] == 'CANCELED'
            assert Tenant.query.get(sample_tenant.id).subscription_status == 'CANCELED'

    def test_unknown_subscription(self, app, sample_tenant):
        with app.app_context():
            from cardledger.services.payment_reconciliation import payment_reconciliation, PaymentEvent

            event = stripe_event('evt_none', 'customer.subscription.deleted', {'id': 'sub_nobody'})

            assert payment_reconciliation.handle_event(PaymentEvent.from_stripe(event)) == {
                'handled': False, 'error': 'Tenant not found',
            }
