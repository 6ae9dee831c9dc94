"""
Peanuts character endpoints.

    GET  /peanuts/<id>  - Fetch a character (empty 200 body when missing)
    POST /peanuts       - Create a character from JSON
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, jsonify, request
from sqlalchemy import select

from target_app import db
from target_app.models import NAME_MAX_LENGTH, Peanuts

logger = logging.getLogger(__name__)

peanuts_bp = Blueprint("peanuts", __name__)


def validate_peanuts_data(data: dict) -> tuple[bool, str | None]:
    """
    Validate a create payload.

    Returns:
        Tuple of (is_valid, error_message).
    """
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return False, "Name is required"
    if len(name) > NAME_MAX_LENGTH:
        return False, f"Name must be between 1 and {NAME_MAX_LENGTH} characters"
    description = data.get("description")
    if description is not None and not isinstance(description, str):
        return False, "Description must be a string"
    return True, None


@peanuts_bp.route("/peanuts/<int:peanuts_id>", methods=["GET"])
def get_peanuts(peanuts_id: int) -> tuple[Response | str, int]:
    logger.info("Get Peanuts Character by id: %s", peanuts_id)
    peanuts = db.session.scalar(select(Peanuts).where(Peanuts.id == peanuts_id))
    if peanuts is None:
        return "", 200
    return jsonify(peanuts.to_dict()), 200


@peanuts_bp.route("/peanuts", methods=["POST"])
def create_peanuts() -> tuple[Response, int]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    is_valid, error = validate_peanuts_data(data)
    if not is_valid:
        return jsonify({"error": error}), 400

    peanuts = Peanuts(name=data["name"], description=data.get("description"))
    db.session.add(peanuts)
    db.session.commit()
    logger.info("Create Peanuts Character: %s", peanuts.name)
    return jsonify(peanuts.to_dict()), 200
