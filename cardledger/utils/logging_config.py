"""
Logging setup for the ledger.

Configures the root logger once with a stdout handler whose format carries
the current request id (set by the tenant context middleware), so ledger and
webhook lines for a single request can be correlated.

Environment Variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default INFO)
"""
import os
import sys
import logging

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] [req:%(request_id)s] %(message)s'

_configured = False


class RequestIdFilter(logging.Filter):
    """Attach g.request_id to every record, '-' outside a request."""

    def filter(self, record):
        request_id = '-'
        try:
            from flask import g, has_request_context
            if has_request_context():
                request_id = getattr(g, 'request_id', '-')
        except RuntimeError:
            pass
        record.request_id = request_id
        return True


def setup_logging(level: str = None) -> None:
    """Configure root logging. Safe to call more than once."""
    global _configured
    if _configured:
        return

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.addHandler(handler)

    # Quiet noisy libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    _configured = True
