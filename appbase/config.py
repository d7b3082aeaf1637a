"""
AppBase Configuration Module

Configuration settings for database, media storage, sessions, management
surfaces, and server. All sensitive values are loaded from environment variables.
"""

import os
import re
from pathlib import Path


URL_PREFIX_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')


def get_database_url():
    """Get database URL, handling the postgres:// to postgresql:// conversion."""
    url = os.environ.get('DATABASE_URL')
    if url:
        if url.startswith('postgres://'):
            url = url.replace('postgres://', 'postgresql://', 1)
        return url
    base_dir = Path(__file__).parent.resolve()
    db_path = Path(os.environ.get('APPBASE_DATABASE_PATH', base_dir / 'data' / 'appbase.db'))
    return f'sqlite:///{db_path}'


def _env_bool(name, default):
    return os.environ.get(name, default).lower() in ('true', '1', 'yes')


class Config:
    """Base configuration class with default settings."""

    # Flask Settings
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')

    # Base Directory
    BASE_DIR = Path(__file__).parent.resolve()

    # Database Settings
    DATABASE_PATH = Path(os.environ.get('APPBASE_DATABASE_PATH', BASE_DIR / 'data' / 'appbase.db'))
    SQLALCHEMY_DATABASE_URI = get_database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Media Storage
    MEDIA_PATH = Path(os.environ.get('APPBASE_MEDIA_PATH', BASE_DIR / 'media'))
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024

    # Server Settings
    PORT = int(os.environ.get('APPBASE_PORT', 8080))
    HOST = os.environ.get('APPBASE_HOST', '0.0.0.0')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

    # Session token signing (Flask-JWT-Extended)
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', 'dev-jwt-secret-change-in-production')
    JWT_ALGORITHM = 'HS256'
    SESSION_TTL_SECONDS = int(os.environ.get('SESSION_TTL_SECONDS', 86400))  # 24 hours sliding
    SESSION_MAX_LIFETIME_SECONDS = int(os.environ.get('SESSION_MAX_LIFETIME_SECONDS', 86400 * 7))
    ELEVATION_MINUTES = int(os.environ.get('ELEVATION_MINUTES', 10))

    # Session cookie
    SESSION_TOKEN_COOKIE = 'appbase_session'
    SESSION_COOKIE_SECURE = _env_bool('USE_SECURE_COOKIES', 'false')
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Strict'
    CSRF_HEADER_NAME = 'X-CSRF-Token'

    # Management surfaces
    ADMIN_URL_PREFIX = os.environ.get('ADMIN_URL_PREFIX', 'dev-admin-surface')
    DEFAULT_CONTRIBUTOR_URL_PREFIX = os.environ.get('DEFAULT_CONTRIBUTOR_URL_PREFIX', 'dev-contributor-surface')
    # Comma-separated addresses, '*' for any. Empty denies every admin login.
    ADMIN_LOGIN_ACCEPT_IP = os.environ.get('ADMIN_LOGIN_ACCEPT_IP', '')
    CONTRIBUTOR_LOGIN_ACCEPT_IP = os.environ.get('CONTRIBUTOR_LOGIN_ACCEPT_IP', '*')
    # Only enable behind a reverse proxy that overwrites X-Forwarded-For
    TRUST_PROXY_HEADERS = _env_bool('TRUST_PROXY_HEADERS', 'false')

    # Login rate limiting (Flask-Limiter)
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')
    LOGIN_RATE_LIMIT = os.environ.get('LOGIN_RATE_LIMIT', '10 per minute')

    # Content
    SIMILARITY_THRESHOLD = float(os.environ.get('SIMILARITY_THRESHOLD', 0.6))
    PUBLIC_PAGE_SIZE = 20
    PUBLIC_MAX_PAGE_SIZE = 100

    # Password Settings
    PASSWORD_MIN_LENGTH = 8

    @classmethod
    def init_app(cls, app):
        """Initialize application with this configuration."""
        db_url = cls.SQLALCHEMY_DATABASE_URI
        if db_url and db_url.startswith('sqlite') and ':memory:' not in db_url:
            cls.DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)

        try:
            Path(cls.MEDIA_PATH).mkdir(parents=True, exist_ok=True)
        except (PermissionError, OSError) as e:
            app.logger.warning(f"Could not create media directory: {e}")


class DevelopmentConfig(Config):
    """Development configuration with debug enabled."""

    DEBUG = True
    TESTING = False
    ADMIN_LOGIN_ACCEPT_IP = os.environ.get('ADMIN_LOGIN_ACCEPT_IP', '127.0.0.1')


class TestingConfig(Config):
    """Testing configuration with an in-memory database."""

    DEBUG = True
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    ADMIN_URL_PREFIX = 'test-admin-prefix'
    DEFAULT_CONTRIBUTOR_URL_PREFIX = 'test-contributor-prefix'
    ADMIN_LOGIN_ACCEPT_IP = '*'
    CONTRIBUTOR_LOGIN_ACCEPT_IP = '*'

    RATELIMIT_ENABLED = False
    LOG_LEVEL = 'WARNING'


class ProductionConfig(Config):
    """Production configuration with strict security settings."""

    DEBUG = False
    TESTING = False

    SESSION_COOKIE_SECURE = _env_bool('USE_SECURE_COOKIES', 'true')

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization."""
        Config.init_app(app)

        required_vars = [
            'SECRET_KEY',
            'JWT_SECRET_KEY',
            'ADMIN_URL_PREFIX',
        ]
        missing = [var for var in required_vars if not os.environ.get(var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        if os.environ.get('SECRET_KEY') == 'dev-secret-key-change-in-production':
            raise ValueError("SECRET_KEY must be changed from default in production")
        if os.environ.get('JWT_SECRET_KEY') == 'dev-jwt-secret-change-in-production':
            raise ValueError("JWT_SECRET_KEY must be changed from default in production")

        admin_prefix = os.environ.get('ADMIN_URL_PREFIX', '')
        if not URL_PREFIX_PATTERN.match(admin_prefix):
            raise ValueError(
                "ADMIN_URL_PREFIX can only contain letters, numbers, underscores, and hyphens"
            )


# Configuration mapping by environment name
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig,
}


def get_config(env_name=None):
    """Get configuration class by environment name.

    Args:
        env_name: Environment name ('development', 'testing', 'production').
                  If None, reads from FLASK_ENV environment variable.

    Returns:
        Configuration class for the specified environment.
    """
    if env_name is None:
        env_name = os.environ.get('FLASK_ENV', 'development')
    return config.get(env_name, config['default'])
