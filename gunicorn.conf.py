"""
Gunicorn configuration.
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Ledger writes are short; sync workers are enough
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 60
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'cardledger'

# The scheduler starts once in the master when the app is preloaded
preload_app = True

graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting cardledger server...")


def on_exit(server):
    from cardledger.utils.scheduler import shutdown_scheduler
    shutdown_scheduler()
    print("[Gunicorn] cardledger server shutting down...")
