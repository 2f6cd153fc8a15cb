"""
Milestone Progress Engine
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'milestone_engine_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)

# Stage names treated as "done" when a stage carries no explicit is_terminal flag
_DEFAULT_TERMINAL_STAGE_NAMES = "done,completed,concluded,finished,concluído,concluido,finalizado"


def _csv(value: str) -> frozenset:
    return frozenset(v.strip().lower() for v in value.split(",") if v.strip())


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # Redis (rate limiter storage in production)
    REDIS_URL = os.getenv("REDIS_URL", "")
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL") or "memory://"

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Trigger secrets; unset means the endpoint family runs in open mode
    CRON_SECRET = os.getenv("CRON_SECRET", "")
    TASK_WEBHOOK_SECRET = os.getenv("TASK_WEBHOOK_SECRET", "")

    # Progress calculation
    TERMINAL_STAGE_NAMES = _csv(os.getenv("TERMINAL_STAGE_NAMES", _DEFAULT_TERMINAL_STAGE_NAMES))

    # Sweep / scheduler
    MILESTONE_SWEEP_LIMIT = int(os.getenv("MILESTONE_SWEEP_LIMIT", "50"))
    MILESTONE_SWEEP_INTERVAL_MINUTES = int(os.getenv("MILESTONE_SWEEP_INTERVAL_MINUTES", "15"))
    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "false").lower() == "true"
    SCHEDULER_TICK_SECONDS = int(os.getenv("SCHEDULER_TICK_SECONDS", "30"))

    # Webhook → recompute hand-off
    PROGRESS_DISPATCH_MODE = os.getenv("PROGRESS_DISPATCH_MODE", "local")  # local | http
    PROGRESS_DISPATCH_URL = os.getenv("PROGRESS_DISPATCH_URL", "")
    PROGRESS_DISPATCH_TIMEOUT = float(os.getenv("PROGRESS_DISPATCH_TIMEOUT", "10"))
    PROGRESS_DISPATCH_WORKERS = int(os.getenv("PROGRESS_DISPATCH_WORKERS", "4"))
    PROGRESS_DISPATCH_INLINE = False


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
    REDIS_URL = ""
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = "memory://"
    CRON_SECRET = ""
    TASK_WEBHOOK_SECRET = ""
    SCHEDULER_ENABLED = False
    PROGRESS_DISPATCH_MODE = "local"
    # Run dispatched recomputes on the request thread so tests are deterministic
    PROGRESS_DISPATCH_INLINE = True


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
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
