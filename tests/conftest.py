"""
Shared fixtures for ledger tests.

Every test gets a fresh SQLite database (in memory unless a module
overrides database_uri) and fake messaging gateways, so nothing here
touches Twilio, SendGrid or Stripe.
"""
import pytest

from cardledger import create_app
from cardledger.config import TestingConfig
from cardledger.extensions import db
from cardledger.services.gateways import MessageGateway
from cardledger.services.notification_dispatcher import notification_dispatcher
from cardledger.utils.exceptions import ExternalGatewayError


class FakeGateway(MessageGateway):
    """Records sends; raises ExternalGatewayError while fail is True."""

    def __init__(self, channel):
        self.name = f'fake-{channel.lower()}'
        self.sent = []
        self.fail = False

    def send(self, recipient, message):
        if self.fail:
            raise ExternalGatewayError(self.name, 'simulated outage')
        self.sent.append((recipient, message))
        return f'{self.name}-{len(self.sent)}'


@pytest.fixture
def database_uri():
    return 'sqlite:///:memory:'


@pytest.fixture
def app(database_uri, monkeypatch):
    monkeypatch.setattr(TestingConfig, 'SQLALCHEMY_DATABASE_URI', database_uri)
    app = create_app('testing')
    notification_dispatcher.set_gateways({
        'SMS': FakeGateway('SMS'),
        'WHATSAPP': FakeGateway('WHATSAPP'),
        'EMAIL': FakeGateway('EMAIL'),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()

    notification_dispatcher.set_gateways(None)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fake_gateways(app):
    return notification_dispatcher.gateways


@pytest.fixture
def sample_tenant(app):
    from cardledger.models import Tenant

    tenant = Tenant(
        name='Pixel Repair',
        slug='pixel-repair',
        contact_email='owner@pixel.test',
        contact_phone='+15550001',
        free_trial_limit=40,
        free_trial_activations=0,
    )
    db.session.add(tenant)
    db.session.commit()
    return tenant


@pytest.fixture
def sample_store(app, sample_tenant):
    from cardledger.models import Store

    store = Store(tenant_id=sample_tenant.id, name='Downtown')
    db.session.add(store)
    db.session.commit()
    return store


@pytest.fixture
def sample_rules(app, sample_tenant):
    """PURCHASE 5%, REPAIR 10%; SILVER 1x from 0, GOLD 1.5x from $1000, PLATINUM 2x from $5000."""
    from cardledger.models import CashbackRule, TierRule

    db.session.add_all([
        CashbackRule(tenant_id=sample_tenant.id, category='PURCHASE', base_rate_bps=500),
        CashbackRule(tenant_id=sample_tenant.id, category='REPAIR', base_rate_bps=1000),
        TierRule(tenant_id=sample_tenant.id, tier='SILVER', min_total_spend_cents=0, multiplier_bps=10000),
        TierRule(tenant_id=sample_tenant.id, tier='GOLD', min_total_spend_cents=100000, multiplier_bps=15000),
        TierRule(tenant_id=sample_tenant.id, tier='PLATINUM', min_total_spend_cents=500000, multiplier_bps=20000),
    ])
    db.session.commit()
    return sample_tenant


@pytest.fixture
def sample_customer(app, sample_tenant):
    from cardledger.models import Customer

    customer = Customer(
        tenant_id=sample_tenant.id,
        name='Ana',
        phone='+15550100',
        email='ana@example.test',
        preferred_channel='SMS',
        tier='SILVER',
        total_spend_cents=0,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture
def active_card(app, sample_tenant, sample_store, sample_customer, sample_rules):
    from cardledger.models import Card

    card = Card(
        tenant_id=sample_tenant.id,
        customer_id=sample_customer.id,
        store_id=sample_store.id,
        uid='CARD-0001',
        status='ACTIVE',
        balance_cents=0,
    )
    db.session.add(card)
    db.session.commit()
    return card


@pytest.fixture
def unassigned_card(app, sample_tenant):
    from cardledger.models import Card

    card = Card(tenant_id=sample_tenant.id, uid='CARD-0002', status='UNASSIGNED')
    db.session.add(card)
    db.session.commit()
    return card


@pytest.fixture
def auth_headers(sample_tenant):
    return {'X-Tenant-ID': str(sample_tenant.id), 'X-Actor-ID': 'staff:1'}


@pytest.fixture
def set_balance(app):
    """Seed a card balance directly (test setup only)."""
    from cardledger.models import Card

    def _set(card_id, balance_cents):
        card = db.session.get(Card, card_id)
        card.balance_cents = balance_cents
        db.session.commit()

    return _set


@pytest.fixture
def admin_headers(auth_headers):
    return dict(auth_headers, **{'X-Actor-Role': 'tenant_admin'})
