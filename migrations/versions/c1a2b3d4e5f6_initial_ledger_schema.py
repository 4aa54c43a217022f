"""Initial ledger schema: tenants, cards, rules, transactions, payments, notifications

Revision ID: c1a2b3d4e5f6
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c1a2b3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('contact_email', sa.String(255), nullable=True),
        sa.Column('contact_phone', sa.String(50), nullable=True),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='TRIALING'),
        sa.Column('stripe_customer_id', sa.String(50), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(50), nullable=True),
        sa.Column('grace_ends_at', sa.DateTime(), nullable=True),
        sa.Column('free_trial_limit', sa.Integer(), nullable=False, server_default='40'),
        sa.Column('free_trial_activations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('trial_expired_notified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('trial_last_warned_remaining', sa.Integer(), nullable=True),
        sa.Column('rules_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_tenants'),
        sa.UniqueConstraint('slug', name='uq_tenants_slug'),
    )
    op.create_index('ix_tenants_stripe_subscription_id', 'tenants', ['stripe_subscription_id'])

    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_stores_tenant_id_tenants'),
        sa.PrimaryKeyConstraint('id', name='pk_stores'),
    )
    op.create_index('ix_stores_tenant_id', 'stores', ['tenant_id'])

    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('preferred_channel', sa.String(20), nullable=False, server_default='SMS'),
        sa.Column('tier', sa.String(50), nullable=False, server_default='SILVER'),
        sa.Column('total_spend_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_customers_tenant_id_tenants'),
        sa.PrimaryKeyConstraint('id', name='pk_customers'),
    )
    op.create_index('ix_customers_tenant_id', 'customers', ['tenant_id'])
    op.create_index('ix_customers_tenant_phone', 'customers', ['tenant_id', 'phone'])

    op.create_table(
        'cards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('uid', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='UNASSIGNED'),
        sa.Column('balance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('balance_cents >= 0', name='ck_cards_balance_non_negative'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_cards_tenant_id_tenants'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_cards_customer_id_customers'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], name='fk_cards_store_id_stores'),
        sa.PrimaryKeyConstraint('id', name='pk_cards'),
        sa.UniqueConstraint('uid', name='uq_cards_uid'),
    )
    op.create_index('ix_cards_tenant_id', 'cards', ['tenant_id'])
    op.create_index('ix_cards_customer_id', 'cards', ['customer_id'])

    op.create_table(
        'cashback_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('base_rate_bps', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('starts_at', sa.DateTime(), nullable=True),
        sa.Column('ends_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_cashback_rules_tenant_id_tenants'),
        sa.PrimaryKeyConstraint('id', name='pk_cashback_rules'),
    )
    op.create_index('ix_cashback_rules_tenant_category', 'cashback_rules', ['tenant_id', 'category'])

    op.create_table(
        'tier_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('tier', sa.String(50), nullable=False),
        sa.Column('min_total_spend_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('multiplier_bps', sa.Integer(), nullable=False, server_default='10000'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_tier_rules_tenant_id_tenants'),
        sa.PrimaryKeyConstraint('id', name='pk_tier_rules'),
        sa.UniqueConstraint('tenant_id', 'tier', name='uq_tier_rules_tenant_tier'),
    )
    op.create_index('ix_tier_rules_tenant_id', 'tier_rules', ['tenant_id'])

    # Append-only ledger
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('card_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.String(100), nullable=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('cashback_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('before_balance_cents', sa.BigInteger(), nullable=False),
        sa.Column('after_balance_cents', sa.BigInteger(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('idempotency_key', sa.String(120), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_transactions_tenant_id_tenants'),
        sa.ForeignKeyConstraint(['card_id'], ['cards.id'], name='fk_transactions_card_id_cards'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_transactions_customer_id_customers'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], name='fk_transactions_store_id_stores'),
        sa.PrimaryKeyConstraint('id', name='pk_transactions'),
        sa.UniqueConstraint('idempotency_key', name='uq_transactions_idempotency_key'),
    )
    op.create_index('ix_transactions_customer_id', 'transactions', ['customer_id'])
    op.create_index('ix_transactions_card_created', 'transactions', ['card_id', 'created_at'])
    op.create_index('ix_transactions_tenant_created', 'transactions', ['tenant_id', 'created_at'])

    op.create_table(
        'purchase_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('card_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.String(100), nullable=True),
        sa.Column('kind', sa.String(20), nullable=False, server_default='PURCHASE'),
        sa.Column('category', sa.String(20), nullable=False, server_default='PURCHASE'),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('description', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('external_id', sa.String(100), nullable=True),
        sa.Column('ledger_transaction_id', sa.Integer(), nullable=True),
        sa.Column('credit_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('failed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_purchase_transactions_tenant_id_tenants'),
        sa.ForeignKeyConstraint(['card_id'], ['cards.id'], name='fk_purchase_transactions_card_id_cards'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], name='fk_purchase_transactions_store_id_stores'),
        sa.ForeignKeyConstraint(['ledger_transaction_id'], ['transactions.id'],
                                name='fk_purchase_transactions_ledger_transaction_id_transactions'),
        sa.PrimaryKeyConstraint('id', name='pk_purchase_transactions'),
        sa.UniqueConstraint('external_id', name='uq_purchase_transactions_external_id'),
    )
    op.create_index('ix_purchase_transactions_tenant_id', 'purchase_transactions', ['tenant_id'])
    op.create_index('ix_purchase_transactions_status', 'purchase_transactions', ['status', 'ledger_transaction_id'])

    op.create_table(
        'payment_links',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_id', sa.Integer(), nullable=False),
        sa.Column('token', sa.String(64), nullable=False),
        sa.Column('url', sa.String(500), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['purchase_id'], ['purchase_transactions.id'],
                                name='fk_payment_links_purchase_id_purchase_transactions'),
        sa.PrimaryKeyConstraint('id', name='pk_payment_links'),
        sa.UniqueConstraint('purchase_id', name='uq_payment_links_purchase_id'),
        sa.UniqueConstraint('token', name='uq_payment_links_token'),
    )

    op.create_table(
        'processed_webhook_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(100), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_processed_webhook_events'),
        sa.UniqueConstraint('event_id', name='uq_processed_webhook_events_event_id'),
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('template', sa.String(50), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('recipient', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name='fk_notifications_tenant_id_tenants'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_notifications_customer_id_customers'),
        sa.PrimaryKeyConstraint('id', name='pk_notifications'),
    )
    op.create_index('ix_notifications_tenant_id', 'notifications', ['tenant_id'])
    op.create_index('ix_notifications_customer_id', 'notifications', ['customer_id'])
    op.create_index('ix_notifications_status_created', 'notifications', ['status', 'created_at'])

    op.create_table(
        'job_leases',
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('holder', sa.String(100), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('acquired_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('name', name='pk_job_leases'),
    )


def downgrade():
    op.drop_table('job_leases')
    op.drop_index('ix_notifications_status_created', table_name='notifications')
    op.drop_index('ix_notifications_customer_id', table_name='notifications')
    op.drop_index('ix_notifications_tenant_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_table('processed_webhook_events')
    op.drop_table('payment_links')
    op.drop_index('ix_purchase_transactions_status', table_name='purchase_transactions')
    op.drop_index('ix_purchase_transactions_tenant_id', table_name='purchase_transactions')
    op.drop_table('purchase_transactions')
    op.drop_index('ix_transactions_tenant_created', table_name='transactions')
    op.drop_index('ix_transactions_card_created', table_name='transactions')
    op.drop_index('ix_transactions_customer_id', table_name='transactions')
    op.drop_table('transactions')
    op.drop_index('ix_tier_rules_tenant_id', table_name='tier_rules')
    op.drop_table('tier_rules')
    op.drop_index('ix_cashback_rules_tenant_category', table_name='cashback_rules')
    op.drop_table('cashback_rules')
    op.drop_index('ix_cards_customer_id', table_name='cards')
    op.drop_index('ix_cards_tenant_id', table_name='cards')
    op.drop_table('cards')
    op.drop_index('ix_customers_tenant_phone', table_name='customers')
    op.drop_index('ix_customers_tenant_id', table_name='customers')
    op.drop_table('customers')
    op.drop_index('ix_stores_tenant_id', table_name='stores')
    op.drop_table('stores')
    op.drop_index('ix_tenants_stripe_subscription_id', table_name='tenants')
    op.drop_table('tenants')
