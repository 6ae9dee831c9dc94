"""
Load-test demo endpoints.

Each route exercises one behaviour a load test should be able to see
in its metrics:

    GET  /                        - Greeting (``?name=``), fast
    GET  /io_task                 - Fixed delay (IO_TASK_SECONDS)
    GET  /cpu_task                - Small CPU loop
    GET  /random_sleep            - Random delay, 0-2s
    GET  /random_status           - One of 200, 200, 300, 400, 500
    GET  /chain                   - Calls /, /io_task and /cpu_task over HTTP
    GET  /error_test              - Always fails with 500
    POST /payment?amount=         - 70% ok, 10% 400, 10% 402, 5% 503, 5% 500
    GET  /health/payment-gateway  - 90% healthy, 10% degraded (503)
"""

from __future__ import annotations

import logging
import random
import time

import requests
from flask import Blueprint, Response, current_app, jsonify, request

logger = logging.getLogger(__name__)

demo_bp = Blueprint("demo", __name__)

RANDOM_STATUSES = (200, 200, 300, 400, 500)


def _rng() -> random.Random:
    return current_app.extensions["target_rng"]


def _sleep(seconds: float) -> None:
    if seconds > 0:
        time.sleep(seconds)


@demo_bp.route("/", methods=["GET"])
def root() -> str:
    name = request.args.get("name", "World")
    logger.debug("Request headers: %s", dict(request.headers))
    logger.info("Hello %s!!", name)
    return f"Hello {name}!!"


@demo_bp.route("/io_task", methods=["GET"])
def io_task() -> str:
    _sleep(current_app.config["IO_TASK_SECONDS"])
    logger.info("io_task")
    return "io_task"


@demo_bp.route("/cpu_task", methods=["GET"])
def cpu_task() -> str:
    total = 0
    for i in range(100):
        total += i * i * i
    logger.info("cpu_task")
    return "cpu_task"


@demo_bp.route("/random_sleep", methods=["GET"])
def random_sleep() -> str:
    _sleep(_rng().random() * 2.0 * current_app.config["RANDOM_SLEEP_SCALE"])
    logger.info("random_sleep")
    return "random_sleep"


@demo_bp.route("/random_status", methods=["GET"])
def random_status() -> tuple[str, int]:
    status = _rng().choice(RANDOM_STATUSES)
    logger.info("random_status: %s", status)
    return "random_status", status


@demo_bp.route("/chain", methods=["GET"])
def chain() -> tuple[Response | str, int]:
    """
    Fan out to three endpoints in sequence, like a service calling its peers.

    Any downstream failure or non-2xx answer is surfaced as 502 so the
    load generator sees it as an error.
    """
    config = current_app.config
    port = config["TARGET_PORT"]
    targets = [
        f"http://{config['CHAIN_SELF_HOST']}:{port}/",
        f"http://{config['TARGET_ONE_HOST']}:{port}/io_task",
        f"http://{config['TARGET_TWO_HOST']}:{port}/cpu_task",
    ]
    logger.debug("chain is starting")
    for url in targets:
        try:
            response = requests.get(url, timeout=config["CHAIN_TIMEOUT"])
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("chain call to %s failed: %s", url, exc)
            return jsonify({"error": "Downstream call failed", "url": url}), 502
    logger.debug("chain is finished")
    return "chain", 200


@demo_bp.route("/error_test", methods=["GET"])
def error_test() -> tuple[Response, int]:
    logger.error("error_test endpoint called")
    return jsonify({"error": "Error test"}), 500


def _parse_amount(raw: str | None) -> float | None:
    if raw is None:
        return 100.0
    try:
        return float(raw)
    except ValueError:
        return None


@demo_bp.route("/payment", methods=["POST"])
def process_payment() -> tuple[Response, int]:
    """
    Simulate a flaky payment processor.

    Outcomes are drawn from ``randrange(100)``:

    - ``< 70``  → 200 success with a transaction id
    - ``< 80``  → 400 invalid payment data
    - ``< 90``  → 402 declined by issuer
    - ``< 95``  → 503 upstream gateway timeout
    - otherwise → 500 internal error
    """
    amount = _parse_amount(request.args.get("amount"))
    if amount is None:
        return jsonify({"status": "error", "message": "amount must be a number"}), 400

    rng = _rng()
    _sleep(rng.randint(50, 500) / 1000.0 * current_app.config["PAYMENT_DELAY_SCALE"])

    outcome = rng.randrange(100)
    if outcome < 70:
        logger.info("Payment processed successfully: amount=%s", amount)
        return jsonify({
            "status": "success",
            "transactionId": f"TXN-{int(time.time() * 1000)}",
            "amount": amount,
        }), 200
    if outcome < 80:
        logger.warning("Payment failed - invalid data: amount=%s", amount)
        return jsonify({"status": "error", "message": "Invalid payment data"}), 400
    if outcome < 90:
        logger.warning("Payment declined: amount=%s", amount)
        return jsonify({"status": "error", "message": "Payment declined by issuer"}), 402
    if outcome < 95:
        logger.error("Payment gateway timeout: amount=%s", amount)
        return jsonify({"status": "error", "message": "Payment gateway timeout"}), 503
    logger.error("Payment processing error: amount=%s", amount)
    return jsonify({"status": "error", "message": "Internal payment error"}), 500


@demo_bp.route("/health/payment-gateway", methods=["GET"])
def payment_gateway_health() -> tuple[Response, int]:
    rng = _rng()
    if rng.randrange(100) < 90:
        return jsonify({"status": "healthy", "latency_ms": rng.randint(10, 50)}), 200
    logger.warning("Payment gateway health check degraded")
    return jsonify({"status": "degraded", "latency_ms": rng.randint(1000, 5000)}), 503
