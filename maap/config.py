"""
MAAP Snapshot Platform
Configuration classes for the Flask app factory, selected by APP_ENV.

Usage:
    cfg = get_config(os.getenv("APP_ENV", "development"))
    app.config.from_object(cfg)

Bulk finalization knobs (all overridable from the environment):
    MAAP_BULK_MAX_WORKERS          thread pool size; 1 runs employees in order
    MAAP_BULK_PERSISTENCE_RETRIES  extra attempts after a PersistenceError
    MAAP_BULK_MAX_BATCH_SIZE       larger batches are rejected up front
    MAAP_BULK_RATE_LIMIT           Flask-Limiter string for the bulk endpoint
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'maap_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Development only; production refuses to start without SECRET_KEY
_DEV_SECRET = secrets.token_hex(32)

_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _database_url(var: str = "DATABASE_URL") -> str | None:
    raw = os.getenv(var, "")
    # SQLAlchemy 2.0 rejects the legacy postgres:// scheme
    return raw.replace("postgres://", "postgresql://", 1) if raw else None


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOL_OPTIONS)

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")

    MAAP_BULK_MAX_WORKERS = _env_int("MAAP_BULK_MAX_WORKERS", 1)
    MAAP_BULK_PERSISTENCE_RETRIES = _env_int("MAAP_BULK_PERSISTENCE_RETRIES", 1)
    MAAP_BULK_MAX_BATCH_SIZE = _env_int("MAAP_BULK_MAX_BATCH_SIZE", 500)
    MAAP_BULK_RATE_LIMIT = os.getenv("MAAP_BULK_RATE_LIMIT", "10 per minute")

    @classmethod
    def validate(cls) -> None:
        """Hook for environments with mandatory settings."""


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url() or _SQLITE_DEV


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL") or _SQLITE_TEST
    # In-memory SQLite runs on a StaticPool, which rejects pool sizing options
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    MAAP_BULK_MAX_WORKERS = 1
    MAAP_BULK_PERSISTENCE_RETRIES = 0


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOL_OPTIONS,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    @classmethod
    def validate(cls) -> None:
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


def get_config(name: str | None) -> type[Config]:
    """Config class for ``name``; unknown names fall back to development."""
    cfg = config.get(name or "default", config["default"])
    cfg.validate()
    return cfg
