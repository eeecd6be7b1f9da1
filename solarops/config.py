"""
Solar Operations Backend
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'solarops_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _env_flag(name, default="false"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "900"))
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # Document store (Supabase-compatible storage REST API)
    DOCUMENT_STORE_URL = os.getenv("DOCUMENT_STORE_URL")
    DOCUMENT_STORE_KEY = os.getenv("DOCUMENT_STORE_KEY")
    DOCUMENT_STORE_BUCKET = os.getenv("DOCUMENT_STORE_BUCKET", "report-attachments")
    DOCUMENT_STORE_TIMEOUT = float(os.getenv("DOCUMENT_STORE_TIMEOUT", "20"))
    DOCUMENT_STORE_MAX_WORKERS = int(os.getenv("DOCUMENT_STORE_MAX_WORKERS", "4"))

    # Push delivery; log-only when PUSH_GATEWAY_URL is unset
    PUSH_GATEWAY_URL = os.getenv("PUSH_GATEWAY_URL")
    PUSH_SERVER_KEY = os.getenv("PUSH_SERVER_KEY")
    PUSH_TIMEOUT = float(os.getenv("PUSH_TIMEOUT", "10"))

    # Attach files sent without a stage id to the last stage record
    LEGACY_LAST_STAGE_ATTACHMENT = _env_flag("LEGACY_LAST_STAGE_ATTACHMENT")

    MAX_CONTENT_LENGTH = 25 * 1024 * 1024  # multipart evidence uploads


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"
    DOCUMENT_STORE_URL = "https://store.test"
    DOCUMENT_STORE_KEY = "test-store-key"
    DOCUMENT_STORE_TIMEOUT = 2.0
    PUSH_GATEWAY_URL = None
    LEGACY_LAST_STAGE_ATTACHMENT = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None

    # Override engine options with PostgreSQL statement + lock timeouts
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000 -c lock_timeout=10000",
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
