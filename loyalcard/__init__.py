"""
loyalcard loyalty platform
Flask application factory
"""
import os
import logging
from flask import Flask

from .extensions import db, migrate, cors
from .config import get_config, validate_config
from .utils.cache import init_cache
from .utils.errors import register_error_handlers
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

    # Refuse to start in production with placeholder secrets
    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Shared counters for rate limiting (Redis with graceful fallback)
    init_cache(app)

    cors.init_app(
        app,
        origins=app.config['CORS_ORIGINS'],
        supports_credentials=True,
        allow_headers=['Content-Type', 'Authorization', 'X-Account-ID', 'X-Business-ID']
    )

    # Register blueprints
    register_blueprints(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Register error handlers
    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'loyalcard'}

    logger.info(f'loyalcard app created ({config_name})')
    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    # Enrollment requests and customer responses
    from .api.approvals import approvals_bp

    # Point awards and card history
    from .api.points import points_bp

    # QR token issue / validation
    from .api.qr import qr_bp

    # Recipient notifications
    from .api.notifications import notifications_bp

    app.register_blueprint(approvals_bp, url_prefix='/api/approvals')
    app.register_blueprint(points_bp, url_prefix='/api/points')
    app.register_blueprint(qr_bp, url_prefix='/api/qr')
    app.register_blueprint(notifications_bp, url_prefix='/api/notifications')
