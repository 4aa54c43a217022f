"""
CLI Commands for the cashback ledger.

Usage:
    flask notifications retry             # Retry recent failed notifications
    flask payments reconcile              # Re-apply credits for confirmed purchases
    flask payments expire                 # Fail purchases whose payment link expired
    flask trial status --tenant-id 1      # Show free-trial usage
    flask trial reset --tenant-id 1       # Start a fresh trial cycle
"""
from .jobs import init_app as init_job_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_job_commands(app)
