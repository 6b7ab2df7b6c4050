"""Bridge API: how the game-server plugin consumes the dispatch queue.

The bridge authenticates with a shared secret in the ``X-Bridge-Token``
header (``BRIDGE_TOKEN`` config). When no token is configured the surface is
disabled (503) rather than open.

    GET  /bridge/commands?limit=N           pending entries, oldest first
    GET  /bridge/commands/<id>              one entry's status
    POST /bridge/commands/<id>/delivered    mark executed
    POST /bridge/commands/<id>/failed       mark failed; JSON { reason }
"""

from __future__ import annotations

import hmac
from functools import wraps
from typing import Callable

from flask import Blueprint, current_app, jsonify, request

from gacha.errors import PersistenceError, QueueEntryNotFound, QueueTransitionError
from gacha.routes.gacha_api import get_roller, parse_limit

bp_bridge = Blueprint("bridge", __name__, url_prefix="/bridge")

BRIDGE_POLL_MAX = 200


def bridge_required(fn: Callable):
    """Decorator enforcing the shared bridge token."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get("BRIDGE_TOKEN")
        if not expected:
            return jsonify({"error": "bridge disabled"}), 503
        supplied = request.headers.get("X-Bridge-Token") or ""
        if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
            return jsonify({"error": "unauthorized"}), 401
        return fn(*args, **kwargs)

    return wrapper


@bp_bridge.route("/commands")
@bridge_required
def list_pending():
    limit, err = parse_limit(request.args.get("limit"), 50, BRIDGE_POLL_MAX)
    if err:
        return jsonify({"error": err}), 400
    entries = get_roller().queue.pending(limit)
    return jsonify({"commands": [e.to_dict() for e in entries]})


@bp_bridge.route("/commands/<int:entry_id>")
@bridge_required
def command_status(entry_id: int):
    entry = get_roller().queue.get(entry_id)
    if entry is None:
        return jsonify({"error": "not found", "id": entry_id}), 404
    return jsonify(entry.to_dict())


def _mark(entry_id: int, action: Callable):
    try:
        entry = action()
    except QueueEntryNotFound:
        return jsonify({"error": "not found", "id": entry_id}), 404
    except QueueTransitionError as exc:
        return jsonify({"error": "invalid transition", "detail": str(exc)}), 409
    except PersistenceError:
        return jsonify({"error": "db error"}), 500
    return jsonify(entry.to_dict())


@bp_bridge.route("/commands/<int:entry_id>/delivered", methods=["POST"])
@bridge_required
def mark_delivered(entry_id: int):
    queue = get_roller().queue
    return _mark(entry_id, lambda: queue.mark_delivered(entry_id))


@bp_bridge.route("/commands/<int:entry_id>/failed", methods=["POST"])
@bridge_required
def mark_failed(entry_id: int):
    payload = request.get_json(silent=True) or {}
    reason = payload.get("reason") if isinstance(payload, dict) else None
    queue = get_roller().queue
    return _mark(entry_id, lambda: queue.mark_failed(entry_id, str(reason) if reason else None))
