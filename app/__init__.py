"""
Referral Rewards Eligibility Engine
Flask application factory
"""
import os
import logging
from flask import Flask
from flask_cors import CORS

from .extensions import db, migrate
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

    CORS(
        app,
        origins=app.config.get('CORS_ORIGINS', []),
        supports_credentials=True,
        allow_headers=['Content-Type', 'Authorization', 'X-Admin-Id']
    )

    # Register blueprints
    register_blueprints(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Nightly rewards apply (production or ENABLE_SCHEDULER only)
    from .utils.scheduler import init_scheduler
    init_scheduler(app)

    # Register error handlers
    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'rewards-engine'}

    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    # Admin: rules, preview, apply
    from .api.rewards import rewards_bp

    # Agent read surface
    from .api.agents import agents_bp

    app.register_blueprint(rewards_bp, url_prefix='/api/admin')
    app.register_blueprint(agents_bp, url_prefix='/api/agents')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from .utils.errors import rewards_error_response, error_response, ErrorCode
    from .utils.exceptions import RewardsError

    @app.errorhandler(RewardsError)
    def handle_rewards_error(error):
        return rewards_error_response(error)

    @app.errorhandler(400)
    def bad_request(error):
        return error_response('Bad request', ErrorCode.INVALID_REQUEST, 400, log_error=False)

    @app.errorhandler(404)
    def not_found(error):
        return error_response('Not found', ErrorCode.NOT_FOUND, 404, log_error=False)

    @app.errorhandler(500)
    def internal_error(error):
        return error_response('Internal server error', ErrorCode.INTERNAL_ERROR, 500)
