"""Gacha API endpoints.

Player-facing roll, history, status and odds. The player is always the
logged-in account; no endpoint accepts a player id from the client.
"""

import math

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from gacha.errors import (
    ConfigError,
    CooldownActiveError,
    DispatchInconsistencyError,
    PersistenceError,
    UnresolvedIdentityError,
)

bp_gacha = Blueprint("gacha", __name__, url_prefix="/gacha")


def get_roller():
    """Return the app's RollOrchestrator or raise ConfigError if none was built."""
    roller = current_app.extensions.get("gacha")
    if roller is None:
        raise ConfigError("reward roller is not configured")
    return roller


def parse_limit(raw, default: int, maximum: int):
    """Parse ?limit=N; returns (limit, error_message)."""
    if raw in (None, ""):
        return default, None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None, "limit must be an integer"
    if value < 1:
        return None, "limit must be positive"
    return min(value, maximum), None


@bp_gacha.route("/roll", methods=["POST"])
@login_required
def roll():
    """Roll once for the current player.

    Response 200: { rewardId, name, rarity, rollId, rolledAt }
    Response 409: { error: 'cooldown_active', retryAt, retryAfterSeconds }
    """
    player_id = current_user.id
    try:
        roller = get_roller()
        outcome = roller.roll(player_id)
    except CooldownActiveError as exc:
        now = roller.clock()
        wait = max(0, math.ceil((exc.retry_at - now).total_seconds()))
        resp = jsonify(
            {
                "error": "cooldown_active",
                "retryAt": exc.retry_at.isoformat() + "Z",
                "retryAfterSeconds": wait,
            }
        )
        resp.headers["Retry-After"] = str(wait)
        return resp, 409
    except UnresolvedIdentityError:
        return jsonify({"error": "account_not_linked", "message": "Link your Minecraft account to roll."}), 403
    except ConfigError:
        return jsonify({"error": "pool_misconfigured"}), 422
    except DispatchInconsistencyError as exc:
        # The roll exists and is owed; support reconciles by roll id
        return jsonify({"error": "delivery_pending", "rollId": exc.roll_record_id}), 500
    except PersistenceError:
        return jsonify({"error": "roll_failed", "retryable": True}), 500
    return jsonify(outcome.to_dict())


@bp_gacha.route("/history")
@login_required
def history():
    """Return the caller's own rolls, newest first."""
    try:
        roller = get_roller()
    except ConfigError:
        return jsonify({"error": "pool_misconfigured"}), 422
    cfg = current_app.config["GACHA"]
    limit, err = parse_limit(request.args.get("limit"), cfg.history_default_limit, cfg.history_max_limit)
    if err:
        return jsonify({"error": err}), 400
    rows = roller.ledger.history_for(current_user.id, limit)
    return jsonify({"history": [r.to_dict() for r in rows]})


@bp_gacha.route("/status")
@login_required
def status():
    """Return { eligible, nextRollAt } for the caller."""
    try:
        roller = get_roller()
    except ConfigError:
        return jsonify({"error": "pool_misconfigured"}), 422
    return jsonify(roller.status_for(current_user.id))


@bp_gacha.route("/pool")
def pool():
    """Public prize list with odds (weights are percentages)."""
    try:
        roller = get_roller()
    except ConfigError:
        return jsonify({"error": "pool_misconfigured"}), 422
    return jsonify(
        {
            "rewards": [
                {"id": r.id, "name": r.name, "rarity": r.rarity.value, "chance": r.weight}
                for r in roller.pool
            ]
        }
    )
