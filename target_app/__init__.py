"""
Demo target service — application factory.

A small Flask service with endpoints designed to be load tested: fixed
and random latency, random status codes, a fan-out chain, a flaky
payment endpoint and a tiny persisted resource.  The built-in load
scenarios are written against these routes.

Randomness comes from ``app.extensions["target_rng"]`` (a
``random.Random``) so tests can replace it and pin outcomes.
"""

from __future__ import annotations

import logging
import random

from flask import Flask
from flask_sqlalchemy import SQLAlchemy

from target_app.config import get_config

db = SQLAlchemy()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(config_name: str | None = None, rng: random.Random | None = None) -> Flask:
    """
    Create and configure the demo target application.

    Args:
        config_name: ``"development"``, ``"testing"`` or ``"production"``;
            ``FLASK_ENV`` is used when None.
        rng: Random source for the random endpoints.

    Returns:
        Configured Flask application with tables created.
    """
    app = Flask(__name__)
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    app.extensions["target_rng"] = rng or random.Random()

    logger.info("Creating target app with config: %s", config_class.__name__)

    db.init_app(app)

    from target_app.routes.demo import demo_bp
    from target_app.routes.peanuts import peanuts_bp

    app.register_blueprint(demo_bp)
    app.register_blueprint(peanuts_bp)

    with app.app_context():
        db.create_all()

    return app
