"""
CLI Commands for background jobs and trial administration.

These commands can be run manually or via cron when the in-process
scheduler is disabled:

# Notification retry (every 5 minutes)
*/5 * * * * cd /app && flask notifications retry

# Payment reconciliation (every 10 minutes)
*/10 * * * * cd /app && flask payments reconcile
"""

import click
from flask.cli import with_appcontext

from ..services.notification_dispatcher import notification_dispatcher
from ..services.payment_reconciliation import payment_reconciliation
from ..services.trial_gate import trial_gate
from ..utils.exceptions import LedgerError


@click.group('notifications')
def notifications_cli():
    """Notification delivery commands."""
    pass


@notifications_cli.command('retry')
@with_appcontext
def retry_notifications():
    """Re-attempt FAILED notifications within the lookback window."""
    stats = notification_dispatcher.retry_sweep()
    if stats['skipped']:
        click.echo("Another process holds the retry lease; skipped")
        return
    click.echo(f"Claimed: {stats['claimed']}  Sent: {stats['sent']}  Failed: {stats['failed']}")


@click.group('payments')
def payments_cli():
    """Payment reconciliation commands."""
    pass


@payments_cli.command('reconcile')
@with_appcontext
def reconcile_payments():
    """Credit CONFIRMED purchases that never reached the ledger."""
    stats = payment_reconciliation.reconcile_unapplied_credits()
    if stats['skipped']:
        click.echo("Another process holds the reconciliation lease; skipped")
        return
    click.echo(f"Checked: {stats['checked']}  Credited: {stats['credited']}  Failed: {stats['failed']}")


@payments_cli.command('expire')
@with_appcontext
def expire_payments():
    """Mark PENDING purchases with expired payment links as FAILED."""
    expired = payment_reconciliation.expire_stale_payments()
    click.echo(f"Expired: {expired} purchases")


@click.group('trial')
def trial_cli():
    """Free-trial administration."""
    pass


def _print_trial(status):
    click.echo(f"  Status: {status['subscription_status']}")
    click.echo(f"  Activations: {status['activations_used']}/{status['trial_limit']} "
               f"({status['activations_remaining']} remaining)")
    if status['subscription_required']:
        click.echo("  Subscription required to activate more cards")


@trial_cli.command('status')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@with_appcontext
def trial_status(tenant_id):
    """Show free-trial usage for a tenant."""
    try:
        status = trial_gate.get_trial_status(tenant_id)
    except LedgerError as e:
        click.echo(e.message)
        return
    click.echo(f"Tenant {tenant_id}:")
    _print_trial(status)


@trial_cli.command('reset')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.confirmation_option(prompt='Reset the activation counter for this tenant?')
@with_appcontext
def trial_reset(tenant_id):
    """Start a fresh trial cycle for a tenant."""
    try:
        status = trial_gate.reset_trial(tenant_id)
    except LedgerError as e:
        click.echo(e.message)
        return
    click.echo(f"Trial reset for tenant {tenant_id}:")
    _print_trial(status)


def init_app(app):
    """Register job commands with the Flask app."""
    app.cli.add_command(notifications_cli)
    app.cli.add_command(payments_cli)
    app.cli.add_command(trial_cli)
