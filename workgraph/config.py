"""
Workgraph configuration classes for the app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())

Graph rules are read from WORKGRAPH_* variables so they can differ per
deployment without code changes:
    WORKGRAPH_MAX_DEPTH        deepest allowed hierarchy level (root = 1)
    WORKGRAPH_ACYCLIC_KINDS    comma list of edge kinds that must stay acyclic
    WORKGRAPH_CACHE_TTL        seconds a cached workstream view lives
"""

import os

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'workgraph_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

DEFAULT_MAX_HIERARCHY_DEPTH = 3
DEFAULT_ACYCLIC_KINDS = "blocks,enables,informs"

_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}


def _normalise_db_url(raw):
    # SQLAlchemy 2.0 no longer accepts the postgres:// scheme
    return raw.replace("postgres://", "postgresql://", 1) if raw else raw


def _kinds_from_env(raw):
    return tuple(k.strip() for k in raw.split(",") if k.strip())


def _flag(name, default):
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOL_OPTIONS)
    AUTO_CREATE_TABLES = _flag("AUTO_CREATE_TABLES", "false")

    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    CACHE_TTL_SECONDS = int(os.getenv("WORKGRAPH_CACHE_TTL", "300"))

    MAX_HIERARCHY_DEPTH = int(os.getenv("WORKGRAPH_MAX_DEPTH", str(DEFAULT_MAX_HIERARCHY_DEPTH)))
    DEPENDENCY_ACYCLIC_KINDS = _kinds_from_env(
        os.getenv("WORKGRAPH_ACYCLIC_KINDS", DEFAULT_ACYCLIC_KINDS)
    )


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _normalise_db_url(os.getenv("DATABASE_URL", "")) or _SQLITE_DEV
    AUTO_CREATE_TABLES = _flag("AUTO_CREATE_TABLES", "true")


class TestingConfig(Config):
    """Isolated settings: in-memory database and cache, default graph rules."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # StaticPool (in-memory SQLite) rejects pool sizing options
    SQLALCHEMY_ENGINE_OPTIONS = {}
    REDIS_URL = "memory://"
    MAX_HIERARCHY_DEPTH = DEFAULT_MAX_HIERARCHY_DEPTH
    DEPENDENCY_ACYCLIC_KINDS = _kinds_from_env(DEFAULT_ACYCLIC_KINDS)


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _normalise_db_url(os.getenv("DATABASE_URL", "")) or None
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOL_OPTIONS,
        "connect_args": {
            "options": f"-c statement_timeout={os.getenv('DB_STATEMENT_TIMEOUT_MS', '30000')}",
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
