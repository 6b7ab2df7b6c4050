"""Admin routes: gacha oversight for staff.

Provides a small, opinionated admin surface for:
  * Dispatch queue inspection by status (find failed deliveries)
  * Any player's roll history (dispute resolution)
  * Reconciliation of recorded-but-unqueued rolls

Security model:
  * All routes require an authenticated user with role == 'admin'.
  * Anonymous callers get 401, non-admins 403.
"""

from __future__ import annotations

from functools import wraps
from typing import Callable

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from gacha import db
from gacha.models.dispatch import DispatchStatus
from gacha.models.models import User
from gacha.routes.gacha_api import get_roller, parse_limit

bp_admin = Blueprint("admin", __name__, url_prefix="/admin")

_STATUSES = {s.value for s in DispatchStatus}


def admin_required(fn: Callable):
    """Decorator enforcing that current_user is an authenticated admin."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"error": "unauthorized"}), 401
        if getattr(current_user, "role", "user") != "admin":
            return jsonify({"error": "forbidden"}), 403
        return fn(*args, **kwargs)

    return login_required(wrapper)  # also stacks login_required for session refresh


@bp_admin.route("/gacha/queue")
@admin_required
def queue():
    """List queue entries, optionally filtered by ?status=pending|delivered|failed."""
    status = (request.args.get("status") or "").strip().lower() or None
    if status and status not in _STATUSES:
        return jsonify({"error": "unknown status", "allowed": sorted(_STATUSES)}), 400
    limit, err = parse_limit(request.args.get("limit"), 50, 500)
    if err:
        return jsonify({"error": err}), 400
    entries = get_roller().queue.by_status(status, limit)
    return jsonify({"entries": [e.to_dict() for e in entries]})


@bp_admin.route("/gacha/history/<int:player_id>")
@admin_required
def player_history(player_id: int):
    if db.session.get(User, player_id) is None:
        return jsonify({"error": "player not found", "player_id": player_id}), 404
    cfg = current_app.config["GACHA"]
    limit, err = parse_limit(request.args.get("limit"), cfg.history_default_limit, cfg.history_max_limit)
    if err:
        return jsonify({"error": err}), 400
    roller = get_roller()
    rows = roller.ledger.history_for(player_id, limit)
    history = []
    for r in rows:
        item = r.to_dict()
        item["dispatch"] = [e.to_dict() for e in roller.queue.for_roll(r.id)]
        history.append(item)
    return jsonify({"player_id": player_id, "history": history})


@bp_admin.route("/gacha/reconcile", methods=["POST"])
@admin_required
def reconcile():
    """Queue commands for recorded rolls that never reached the queue."""
    limit, err = parse_limit(request.args.get("limit"), 100, 1000)
    if err:
        return jsonify({"error": err}), 400
    report = get_roller().reconcile(limit)
    return jsonify(report.to_dict())
