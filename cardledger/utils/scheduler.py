"""
Background scheduler for periodic ledger sweeps.

Handles:
- Notification retry sweep (every 5 minutes)
- Unapplied payment credit reconciliation (every 10 minutes)
- Stale payment link expiry (hourly)

APScheduler's max_instances=1 keeps a job single-flight inside one process;
the sweeps themselves take a JobLease row so that two processes running the
scheduler still never overlap.
"""
import os
import logging

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None
_flask_app = None  # Flask app reference for job context


def init_scheduler(app):
    """
    Initialize the background scheduler.

    Only runs in production or when ENABLE_SCHEDULER=true.
    """
    global _scheduler, _flask_app

    _flask_app = app

    if app.config.get('TESTING'):
        logger.info('[Scheduler] Disabled in testing mode')
        return

    if not (os.getenv('FLASK_ENV') == 'production' or os.getenv('ENABLE_SCHEDULER') == 'true'):
        logger.info('[Scheduler] Disabled (set FLASK_ENV=production or ENABLE_SCHEDULER=true)')
        return

    # One scheduler per process tree (gunicorn workers inherit the env)
    if os.getenv('SCHEDULER_RUNNING') == 'true':
        logger.info('[Scheduler] Already running in another process')
        return

    from apscheduler.schedulers.background import BackgroundScheduler
    from apscheduler.triggers.interval import IntervalTrigger

    _scheduler = BackgroundScheduler(
        timezone='UTC',
        job_defaults={
            'coalesce': True,  # Combine missed runs
            'max_instances': 1,  # Prevent concurrent runs
            'misfire_grace_time': 300
        }
    )

    _scheduler.add_job(
        run_notification_retry,
        trigger=IntervalTrigger(minutes=5),
        id='notification_retry',
        name='Retry failed notifications',
        replace_existing=True
    )

    _scheduler.add_job(
        run_payment_reconciliation,
        trigger=IntervalTrigger(minutes=10),
        id='payment_reconciliation',
        name='Apply confirmed payments missing a ledger credit',
        replace_existing=True
    )

    _scheduler.add_job(
        run_payment_expiry,
        trigger=IntervalTrigger(hours=1),
        id='payment_expiry',
        name='Fail pending payments past link expiry',
        replace_existing=True
    )

    _scheduler.start()
    os.environ['SCHEDULER_RUNNING'] = 'true'
    logger.info('[Scheduler] Started with %d jobs', len(_scheduler.get_jobs()))

    import atexit
    atexit.register(shutdown_scheduler)


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info('[Scheduler] Shutdown complete')


def _run_in_app(label, fn):
    if not _flask_app:
        logger.error('[Scheduler] Flask app not initialized')
        return None

    with _flask_app.app_context():
        try:
            result = fn()
            logger.info('[Scheduler] %s complete: %s', label, result)
            return result
        except Exception:
            logger.exception('[Scheduler] %s failed', label)
            from ..extensions import db
            db.session.rollback()
            return None


def run_notification_retry():
    """Re-attempt recently failed notifications."""
    from ..services.notification_dispatcher import notification_dispatcher
    return _run_in_app('Notification retry', notification_dispatcher.retry_sweep)


def run_payment_reconciliation():
    """Credit CONFIRMED payments whose ledger credit has not landed yet."""
    from ..services.payment_reconciliation import payment_reconciliation
    return _run_in_app('Payment reconciliation', payment_reconciliation.reconcile_unapplied_credits)


def run_payment_expiry():
    """Move abandoned PENDING payments to FAILED."""
    from ..services.payment_reconciliation import payment_reconciliation
    return _run_in_app('Payment expiry', payment_reconciliation.expire_stale_payments)
