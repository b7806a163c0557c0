"""
Configuration classes for the application factory.

    app.config.from_object(config[os.getenv("APP_ENV", "development")]())

Classes are instantiated so ProductionConfig can refuse to start without
its required environment.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'approval_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

_DEFAULT_ROLES = "ADMIN,ACCOUNTANT,AUDITOR,MEMBER"


def _csv_env(name: str, default: str) -> list[str]:
    return [part.strip() for part in os.getenv(name, default).split(",") if part.strip()]


def _database_url(default: str | None) -> str | None:
    """DATABASE_URL with the legacy ``postgres://`` scheme fixed for SQLAlchemy 2."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    if raw.startswith("postgres://"):
        raw = "postgresql://" + raw[len("postgres://"):]
    return raw


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # Flask-Limiter reads RATELIMIT_*; redis when REDIS_URL is set
    REDIS_URL = os.getenv("REDIS_URL", "")
    RATELIMIT_STORAGE_URI = REDIS_URL or "memory://"
    RATELIMIT_HEADERS_ENABLED = True
    APPROVAL_WRITE_RATE_LIMIT = os.getenv("APPROVAL_WRITE_RATE_LIMIT", "60/minute")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "")
    SLOW_REQUEST_MS = int(os.getenv("SLOW_REQUEST_MS", "1000"))

    # Roles accepted as step approvers; validated against Role at startup
    APPROVAL_ROLES = _csv_env("APPROVAL_ROLES", _DEFAULT_ROLES)

    MAX_CONTENT_LENGTH = 2 * 1024 * 1024


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = "memory://"


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url(None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")

        options = {
            "pool_pre_ping": True,
            "pool_size": 5,
            "max_overflow": 10,
            "pool_recycle": 300,
            "pool_timeout": 20,
        }
        if self.SQLALCHEMY_DATABASE_URI.startswith("postgresql"):
            # Row locks taken by approve/reject must not wait forever
            options["connect_args"] = {"options": "-c statement_timeout=30000 -c lock_timeout=5000"}
        self.SQLALCHEMY_ENGINE_OPTIONS = options


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
