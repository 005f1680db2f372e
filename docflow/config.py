"""
Docflow Routing & Escalation Engine
Configuration classes for the app factory.

    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])

Every tunable is an environment variable with a development default.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'docflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Per-process random key for development; production refuses to start without SECRET_KEY
_DEV_SECRET = secrets.token_hex(32)

_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _database_url(fallback: str | None) -> str | None:
    """DATABASE_URL with Heroku-style ``postgres://`` rewritten for SQLAlchemy 2."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return fallback
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOL_OPTIONS)

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Real-time fan-out; "memory://" keeps pushes in-process
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    REALTIME_CHANNEL_PREFIX = os.getenv("REALTIME_CHANNEL_PREFIX", "docflow:notify")

    # Escalation
    SCHEDULER_ENABLED = _env_flag("SCHEDULER_ENABLED")
    ESCALATION_SCAN_INTERVAL_SECONDS = _env_int("SLA_SCAN_EVERY_SECONDS", 300)
    ESCALATION_BATCH_SIZE = _env_int("ESCALATION_BATCH_SIZE", 200)
    PRIORITY_CEILING = _env_int("PRIORITY_CEILING", 10)
    SYSTEM_USER_ID = _env_int("SYSTEM_USER_ID", 1)

    # SLA badge and pre-due reminder
    SLA_DUE_SOON_HOURS = _env_int("SLA_DUE_SOON_HOURS", 4)
    SLA_REMINDER_MINUTES_BEFORE = _env_int("SLA_REMINDER_MINUTES_BEFORE", 30)

    # Reference numbering
    NUMBER_ALLOCATION_MAX_ATTEMPTS = 3


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # In-memory SQLite runs on a StaticPool, which rejects pool sizing options
    SQLALCHEMY_ENGINE_OPTIONS = {}
    REDIS_URL = "memory://"
    SCHEDULER_ENABLED = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url(None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOL_OPTIONS,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
