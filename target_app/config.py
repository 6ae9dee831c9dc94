"""
Demo target service configuration.

Defines environment-specific configuration classes for the service the
load generator drives.  Delay-related settings are scale factors so the
test suite can turn every artificial sleep off without touching the
endpoint code.
"""

from __future__ import annotations

import os


class Config:
    """Base configuration shared by every environment."""

    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    SQLALCHEMY_DATABASE_URI: str = os.environ.get("DATABASE_URL", "sqlite:///:memory:")

    # Fixed delay of /io_task in seconds.
    IO_TASK_SECONDS: float = float(os.environ.get("IO_TASK_SECONDS", "1.0"))

    # /random_sleep waits up to 2s; /payment waits 50-500ms.  Both are
    # multiplied by these factors.
    RANDOM_SLEEP_SCALE: float = float(os.environ.get("RANDOM_SLEEP_SCALE", "1.0"))
    PAYMENT_DELAY_SCALE: float = float(os.environ.get("PAYMENT_DELAY_SCALE", "1.0"))

    # Hosts that /chain fans out to, all on the same port.
    CHAIN_SELF_HOST: str = os.environ.get("CHAIN_SELF_HOST", "localhost")
    TARGET_ONE_HOST: str = os.environ.get("TARGET_ONE_HOST", "localhost")
    TARGET_TWO_HOST: str = os.environ.get("TARGET_TWO_HOST", "localhost")
    TARGET_PORT: int = int(os.environ.get("TARGET_PORT", "8080"))
    CHAIN_TIMEOUT: int = int(os.environ.get("CHAIN_TIMEOUT", "10"))


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG: bool = True
    TESTING: bool = False


class TestingConfig(Config):
    """
    Test-suite overrides: in-memory database and no artificial delays.

    Flask-SQLAlchemy gives in-memory SQLite a single shared connection,
    so the live-server fixture can serve requests from worker threads.
    """

    DEBUG: bool = True
    TESTING: bool = True
    SQLALCHEMY_DATABASE_URI: str = "sqlite://"
    IO_TASK_SECONDS: float = 0.0
    RANDOM_SLEEP_SCALE: float = 0.0
    PAYMENT_DELAY_SCALE: float = 0.0
    CHAIN_TIMEOUT: int = 2


class ProductionConfig(Config):
    """Production configuration; everything comes from the environment."""

    DEBUG: bool = False
    TESTING: bool = False


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the configuration class for the given environment.

    When *env* is None the ``FLASK_ENV`` variable is consulted, falling
    back to ``"development"``.
    """
    if env is None:
        env = os.environ.get("FLASK_ENV", "development")
    return config.get(env, config["default"])
