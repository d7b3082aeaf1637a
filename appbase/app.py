"""
Flask Application Factory for AppBase.

This module provides the create_app() factory function that creates and
configures the Flask application. It initializes:
- SQLAlchemy database connection and record families
- Session token signing (Flask-JWT-Extended)
- Login rate limiting (Flask-Limiter)
- Blueprint registration (management surfaces and public API)
- Error handlers
- Logging configuration
- CLI commands

Usage:
    # Development
    flask --app appbase.app run

    # Production
    gunicorn -w 4 -b 0.0.0.0:8080 'appbase.app:create_app("production")'
"""

import logging
import sys
from typing import Optional

from flask import Flask, g, jsonify

from appbase.cli import register_cli
from appbase.config import get_config
from appbase.errors import AppBaseError
from appbase.extensions import jwt, limiter
from appbase.models import Setting, db, utcnow
from appbase.models.principal import ROLE_ADMIN
from appbase.storage import SETTINGS, storage


def create_app(config_name: Optional[str] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name ('development', 'testing', 'production').
                    If None, reads from FLASK_ENV environment variable.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    # Load configuration
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    config_class.init_app(app)
    app.config['CONFIG_CLASS'] = config_class

    # Initialize extensions
    db.init_app(app)
    jwt.init_app(app)
    _init_security(app)

    # Create tables and seed instance settings
    with app.app_context():
        storage.initialize_schema()
        _seed_settings(app)

    _configure_logging(app)
    _register_blueprints(app)
    _register_error_handlers(app)
    register_cli(app)

    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring."""
        return jsonify({
            'status': 'healthy',
            'service': 'appbase',
            'timestamp': utcnow().isoformat(),
        })

    return app


def _init_security(app: Flask) -> None:
    """
    Initialize the login rate limiter.

    Limits are declared per route; storage and enablement come from
    RATELIMIT_STORAGE_URI and RATELIMIT_ENABLED.
    """
    limiter.init_app(app)
    app.limiter = limiter
    if app.config.get('RATELIMIT_ENABLED'):
        app.logger.info('Login rate limiting enabled (Flask-Limiter)')


def _seed_settings(app: Flask) -> None:
    """Store the default contributor prefix on first run so it is visible in the inspector."""
    with storage.begin_transaction() as txn:
        if txn.get(SETTINGS, Setting.CONTRIBUTOR_PATH_PREFIX) is not None:
            return
        setting = Setting(key=Setting.CONTRIBUTOR_PATH_PREFIX,
                          value=app.config['DEFAULT_CONTRIBUTOR_URL_PREFIX'],
                          updated_at=utcnow())
        txn.put(SETTINGS, setting.key, setting)
        txn.commit()


def _configure_logging(app: Flask) -> None:
    """
    Configure application logging.

    Records from the appbase package loggers and app.logger go to stdout.
    """
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    package_logger = logging.getLogger('appbase')
    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
    package_logger.setLevel(level)

    app.logger.setLevel(level)


def _register_blueprints(app: Flask) -> None:
    """
    Register blueprints with the application.

    Management surfaces are registered under /management/<surface_prefix>;
    the public read-only API under /api/v1.
    """
    from appbase.routes import management_bp, public_bp

    app.register_blueprint(management_bp, url_prefix='/management/<surface_prefix>')
    app.register_blueprint(public_bp, url_prefix='/api/v1')


def _register_error_handlers(app: Flask) -> None:
    """
    Register error handlers for service errors and common HTTP errors.

    Internal details such as field names are only echoed on the Admin surface.
    """
    @app.errorhandler(AppBaseError)
    def appbase_error(error):
        include_details = getattr(g, 'surface_role', None) == ROLE_ADMIN
        if error.status_code >= 500:
            app.logger.error(f'{error!r}')
        return jsonify(error.to_dict(include_details=include_details)), error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'status': 'error',
            'error': 'Bad Request',
            'message': str(error.description) if hasattr(error, 'description') else 'Invalid request'
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'status': 'error',
            'error': 'Not Found',
            'message': 'The requested resource was not found'
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'status': 'error',
            'error': 'Method Not Allowed',
            'message': 'The method is not allowed for the requested URL'
        }), 405

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({
            'status': 'error',
            'error': 'File Too Large',
            'message': 'File size exceeds the maximum allowed limit'
        }), 413

    @app.errorhandler(429)
    def too_many_requests(error):
        return jsonify({
            'status': 'error',
            'error': 'Too Many Requests',
            'message': 'Too many attempts, try again later'
        }), 429

    @app.errorhandler(500)
    def internal_server_error(error):
        app.logger.error(f"Internal server error: {getattr(error, 'original_exception', error)!r}")
        return jsonify({
            'status': 'error',
            'error': 'Internal Server Error',
            'message': 'An unexpected error occurred'
        }), 500
