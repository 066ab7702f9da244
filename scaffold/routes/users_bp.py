"""Example user routes.

Stub handlers: no persistence, fixed or echoed data, a short simulated
latency so the timing middleware has something to measure.
"""

import re
import time

from flask import Blueprint, current_app, jsonify, request

from ..observability.tracing import get_request_logger

users_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_SAMPLE_USERS = [
    {"id": "user_1", "username": "john_doe", "email": "john@example.com"},
    {"id": "user_2", "username": "jane_doe", "email": "jane@example.com"},
]


def _server():
    return current_app.config["server"]


def _log():
    return get_request_logger(_server().logger)


def _simulate_work() -> None:
    delay = _server().simulated_latency
    if delay > 0:
        time.sleep(delay)


@users_bp.route("", methods=["GET"])
def list_users():
    _log().info("Listing users")
    _simulate_work()
    return jsonify({"users": _SAMPLE_USERS, "total": len(_SAMPLE_USERS)})


@users_bp.route("/<user_id>", methods=["GET"])
def get_user(user_id):
    _log().info("Fetching user", target_user_id=user_id)
    _simulate_work()
    return jsonify(
        {
            "id": user_id,
            "username": "john_doe",
            "email": "john@example.com",
            "created_at": int(time.time()),
        }
    )


@users_bp.route("", methods=["POST"])
def create_user():
    """Create a user; ``username`` and a valid ``email`` are required."""
    log = _log()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        log.warning("Invalid user data", reason="body is not a JSON object")
        return jsonify({"error": "invalid_request"}), 400

    username = data.get("username")
    email = data.get("email")
    if not isinstance(username, str) or not username.strip():
        log.warning("Invalid user data", reason="username required")
        return jsonify({"error": "invalid_request"}), 400
    if not isinstance(email, str) or not _EMAIL_RE.match(email):
        log.warning("Invalid user data", reason="valid email required")
        return jsonify({"error": "invalid_request"}), 400

    log.info("Creating user", username=username)
    _simulate_work()
    return jsonify({"id": "user_123", "username": username, "email": email}), 201


@users_bp.route("/<user_id>", methods=["PUT"])
def update_user(user_id):
    _log().info("Updating user", target_user_id=user_id)
    _simulate_work()
    return jsonify({"id": user_id, "updated_at": int(time.time())})


@users_bp.route("/<user_id>", methods=["DELETE"])
def delete_user(user_id):
    _log().info("Deleting user", target_user_id=user_id)
    _simulate_work()
    return "", 204
