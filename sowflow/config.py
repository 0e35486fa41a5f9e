"""
SOW Workflow Engine
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])

Stage-rule keys (SOW_*) feed StageRules.from_config(); leave them unset
to get the built-in PM-designation defaults.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'sowflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random per-process key for development; production reads SECRET_KEY
_DEV_SECRET = secrets.token_hex(32)


def _csv_env(name):
    """Comma-separated env var → frozenset, or None when unset."""
    raw = os.getenv(name)
    if raw is None:
        return None
    return frozenset(p.strip() for p in raw.split(",") if p.strip())


def _database_url(default):
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else default


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Logging (env vars LOG_LEVEL / LOG_FORMAT still win, see logging_config)
    LOG_LEVEL = None
    LOG_FORMAT = None

    # Stage rules
    SOW_EXCLUDED_PRODUCT_IDS = _csv_env("SOW_EXCLUDED_PRODUCT_IDS")
    SOW_PM_PRODUCT_THRESHOLD = int(os.getenv("SOW_PM_PRODUCT_THRESHOLD", "3"))
    SOW_PM_UNIT_THRESHOLD = float(os.getenv("SOW_PM_UNIT_THRESHOLD", "100"))

    # X-User-Id / X-User-Role required on every /api/v1 route except health
    SOW_REQUIRE_ACTOR = True


class DevelopmentConfig(Config):
    """Local development: SQLite unless DATABASE_URL points elsewhere."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    """pytest: in-memory SQLite and fixed stage rules."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    LOG_LEVEL = "WARNING"
    SOW_EXCLUDED_PRODUCT_IDS = None
    SOW_PM_PRODUCT_THRESHOLD = 3
    SOW_PM_UNIT_THRESHOLD = 100


class ProductionConfig(Config):
    """PostgreSQL behind a gateway that sets the X-User-* headers."""

    REQUIRED_ENV = ("DATABASE_URL", "SECRET_KEY")

    SQLALCHEMY_DATABASE_URI = _database_url(None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    LOG_FORMAT = "json"

    SQLALCHEMY_ENGINE_OPTIONS = {
        **Config.SQLALCHEMY_ENGINE_OPTIONS,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 20,
        # FOR UPDATE locks in the workflow services must not wait forever
        "connect_args": {"options": "-c statement_timeout=30000 -c lock_timeout=10000"},
    }

    def __init__(self):
        missing = [name for name in self.REQUIRED_ENV if not os.getenv(name)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variable(s) for production: {', '.join(missing)}"
            )


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
