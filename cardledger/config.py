"""
Configuration management for the cardledger platform.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, 'true' if default else 'false').lower() in ('1', 'true', 'yes')


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Trial gate
    FREE_TRIAL_LIMIT = _env_int('FREE_TRIAL_LIMIT', 40)
    TRIAL_WARNING_THRESHOLD = _env_int('TRIAL_WARNING_THRESHOLD', 5)

    # Balance ledger
    LEDGER_MAX_RETRIES = _env_int('LEDGER_MAX_RETRIES', 5)
    TIER_ALLOW_DOWNGRADE = _env_bool('TIER_ALLOW_DOWNGRADE', False)
    DEFAULT_TIER = os.getenv('DEFAULT_TIER', 'SILVER')

    # Notification dispatcher
    NOTIFICATION_RETRY_LOOKBACK_HOURS = _env_int('NOTIFICATION_RETRY_LOOKBACK_HOURS', 24)
    NOTIFICATION_RETRY_BATCH_SIZE = _env_int('NOTIFICATION_RETRY_BATCH_SIZE', 10)
    NOTIFICATION_MAX_ATTEMPTS = _env_int('NOTIFICATION_MAX_ATTEMPTS', 5)
    NOTIFICATION_ASYNC_DELIVERY = _env_bool('NOTIFICATION_ASYNC_DELIVERY', True)
    NOTIFICATION_DEFAULT_CHANNEL = os.getenv('NOTIFICATION_DEFAULT_CHANNEL', 'SMS')
    GATEWAY_TIMEOUT_SECONDS = _env_int('GATEWAY_TIMEOUT_SECONDS', 10)

    # Payment reconciliation
    PAYMENT_MAX_CREDIT_ATTEMPTS = _env_int('PAYMENT_MAX_CREDIT_ATTEMPTS', 5)
    PAYMENT_LINK_TTL_HOURS = _env_int('PAYMENT_LINK_TTL_HOURS', 24)
    PAYMENT_CURRENCY = os.getenv('PAYMENT_CURRENCY', 'usd')
    FRONTEND_URL = os.getenv('FRONTEND_URL', 'http://localhost:3000')

    # Sweep leases
    SWEEP_LEASE_SECONDS = _env_int('SWEEP_LEASE_SECONDS', 300)

    # External gateways
    STRIPE_SECRET_KEY = os.getenv('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.getenv('STRIPE_WEBHOOK_SECRET')
    TWILIO_ACCOUNT_SID = os.getenv('TWILIO_ACCOUNT_SID')
    TWILIO_AUTH_TOKEN = os.getenv('TWILIO_AUTH_TOKEN')
    TWILIO_FROM_NUMBER = os.getenv('TWILIO_FROM_NUMBER')
    SENDGRID_API_KEY = os.getenv('SENDGRID_API_KEY')
    SENDGRID_FROM_EMAIL = os.getenv('SENDGRID_FROM_EMAIL', 'noreply@cardledger.app')
    SENDGRID_FROM_NAME = os.getenv('SENDGRID_FROM_NAME', 'Cardledger Rewards')

    # Rule cache
    RULE_CACHE_TIMEOUT = _env_int('RULE_CACHE_TIMEOUT', 300)


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///cardledger_dev.db'  # SQLite fallback for local dev
    )


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 5,
        'pool_recycle': 300,
        'pool_pre_ping': True,
    }

    _secret_key = os.getenv('SECRET_KEY', '')

    @classmethod
    def validate_secret_key(cls) -> str:
        """
        Validate SECRET_KEY in production environment.

        Raises:
            RuntimeError: If SECRET_KEY is missing or too short
        """
        if not cls._secret_key:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable is not set!\n"
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        if len(cls._secret_key) < 32:
            raise RuntimeError("CRITICAL: SECRET_KEY is too short (minimum 32 characters required)!")

        return cls._secret_key

    @classmethod
    def validate_webhook_secret(cls) -> None:
        """Payment webhooks cannot be verified without the signing secret."""
        if not cls.STRIPE_WEBHOOK_SECRET:
            raise RuntimeError("CRITICAL: STRIPE_WEBHOOK_SECRET environment variable is not set!")

    SECRET_KEY = _secret_key


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    NOTIFICATION_ASYNC_DELIVERY = False
    STRIPE_WEBHOOK_SECRET = 'whsec_test'
    CACHE_TYPE = 'SimpleCache'


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_secret_key()
        ProductionConfig.validate_webhook_secret()
