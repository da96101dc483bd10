"""
Configuration management for the loyalcard service.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _split_csv(value: str) -> list:
    return [part.strip() for part in (value or '').split(',') if part.strip()]


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # QR signing (rotated on a periodic cycle; previous keys stay valid for verification)
    QR_SECRET_KEY = os.getenv('QR_SECRET_KEY', 'dev-qr-secret-change-in-production')
    QR_PREVIOUS_SECRET_KEYS = _split_csv(os.getenv('QR_PREVIOUS_SECRET_KEYS', ''))
    QR_VALIDITY_DAYS = int(os.getenv('QR_VALIDITY_DAYS', '180'))
    QR_MAX_CLOCK_SKEW_SECONDS = int(os.getenv('QR_MAX_CLOCK_SKEW_SECONDS', '300'))

    # Notification dedup window
    NOTIFICATION_DEDUP_SECONDS = int(os.getenv('NOTIFICATION_DEDUP_SECONDS', '60'))

    # Point awards per scanning business per window
    AWARD_RATE_LIMIT = int(os.getenv('AWARD_RATE_LIMIT', '50'))
    AWARD_RATE_WINDOW_SECONDS = int(os.getenv('AWARD_RATE_WINDOW_SECONDS', '60'))

    # Transient transaction failures (serialization conflicts, unique races)
    TRANSACTION_MAX_RETRIES = int(os.getenv('TRANSACTION_MAX_RETRIES', '3'))
    TRANSACTION_RETRY_BACKOFF_SECONDS = float(os.getenv('TRANSACTION_RETRY_BACKOFF_SECONDS', '0.05'))

    # Pending enrollment requests
    APPROVAL_REQUEST_TTL_DAYS = int(os.getenv('APPROVAL_REQUEST_TTL_DAYS', '7'))

    CORS_ORIGINS = _split_csv(os.getenv('CORS_ORIGINS', 'http://localhost:5173,http://127.0.0.1:5173'))


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///loyalcard_dev.db'  # SQLite fallback for local dev
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
        # Award and approval transactions rely on serialization failures being retried
        'isolation_level': 'REPEATABLE READ',
    }

    _secret_key = os.getenv('SECRET_KEY', '')
    _qr_secret_key = os.getenv('QR_SECRET_KEY', '')

    @classmethod
    def validate_secret(cls, name: str, value: str) -> str:
        """
        Validate a signing secret in the production environment.

        Raises:
            RuntimeError: If the secret is missing, short, or contains unsafe values
        """
        if not value:
            raise RuntimeError(
                f"CRITICAL: {name} environment variable is not set!\n"
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        insecure_patterns = ['dev', 'change', 'default', 'test', 'secret', 'password']
        lower_value = value.lower()
        for pattern in insecure_patterns:
            if pattern in lower_value:
                raise RuntimeError(
                    f"CRITICAL: {name} contains '{pattern}' which suggests it's not secure!"
                )

        if len(value) < 32:
            raise RuntimeError(f"CRITICAL: {name} is too short (minimum 32 characters required)!")

        return value

    SECRET_KEY = _secret_key
    QR_SECRET_KEY = _qr_secret_key


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    QR_SECRET_KEY = 'testing-qr-signing-key'
    QR_PREVIOUS_SECRET_KEYS = ['testing-qr-signing-key-previous']
    TRANSACTION_RETRY_BACKOFF_SECONDS = 0
    AWARD_RATE_LIMIT = 5
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

    In production this ensures SECRET_KEY and QR_SECRET_KEY are properly configured.

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_secret('SECRET_KEY', ProductionConfig._secret_key)
        ProductionConfig.validate_secret('QR_SECRET_KEY', ProductionConfig._qr_secret_key)
