"""
Cardledger: multi-tenant cashback ledger and tier engine.
Flask application factory
"""
import os
import logging
from flask import Flask
from flask_cors import CORS

from .extensions import db, migrate, compress
from .config import get_config, validate_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()

    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    compress.init_app(app)

    from .utils.cache import init_cache
    init_cache(app)

    cors_origins = [app.config['FRONTEND_URL']]
    if config_name != 'production':
        cors_origins += ['http://localhost:5173', 'http://127.0.0.1:5173']
    CORS(app, origins=cors_origins, supports_credentials=True,
         allow_headers=['Content-Type', 'Authorization', 'X-Tenant-ID', 'X-Actor-ID', 'X-Actor-Role', 'X-Request-ID'])

    # Initialize request ID tracking for request tracing
    from .middleware import init_request_id_tracking
    init_request_id_tracking(app)

    # Gateways are rebuilt from this app's config on first use
    from .services.notification_dispatcher import notification_dispatcher
    notification_dispatcher.set_gateways(None)

    register_blueprints(app)

    from .commands import init_app as init_commands
    init_commands(app)

    # Background jobs: notification retry, payment reconciliation, link expiry
    from .utils.scheduler import init_scheduler
    init_scheduler(app)

    register_error_handlers(app)

    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'cardledger'}

    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    from .api.transactions import transactions_bp
    from .api.cards import cards_bp
    from .api.trial import trial_bp
    from .api.purchases import purchases_bp
    from .api.notifications import notifications_bp
    from .api.rules import rules_bp
    from .webhooks.stripe import stripe_webhook_bp

    app.register_blueprint(transactions_bp, url_prefix='/api/transactions')
    app.register_blueprint(cards_bp, url_prefix='/api/cards')
    app.register_blueprint(trial_bp, url_prefix='/api/trial')
    app.register_blueprint(purchases_bp, url_prefix='/api/purchases')
    app.register_blueprint(notifications_bp, url_prefix='/api/notifications')
    app.register_blueprint(rules_bp, url_prefix='/api/rules')

    # Webhooks
    app.register_blueprint(stripe_webhook_bp, url_prefix='/webhook/stripe')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from .utils.errors import error_response, ledger_error_response, ErrorCode
    from .utils.exceptions import LedgerError

    @app.errorhandler(LedgerError)
    def handle_ledger_error(error):
        return ledger_error_response(error)

    @app.errorhandler(400)
    def bad_request(error):
        return error_response('Bad request', ErrorCode.INVALID_REQUEST, 400, log_error=False)

    @app.errorhandler(404)
    def not_found(error):
        return error_response('Not found', ErrorCode.NOT_FOUND, 404, log_error=False)

    @app.errorhandler(500)
    def internal_error(error):
        return error_response('Internal server error', ErrorCode.INTERNAL_ERROR, 500)
