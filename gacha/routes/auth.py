"""Authentication routes: login, logout.

Session identity is the only thing the gacha endpoints trust. Sign-up,
account linking and 2FA belong to the site's auth provider; these two routes
exist so a trusted front end (or an operator) can open a Flask-Login session.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy import func

from gacha.models.models import User

bp = Blueprint("auth", __name__)


@bp.route("/login", methods=["POST"])
def login():
    """Accepts form fields or JSON { username, password }; username is case-insensitive."""
    payload = request.get_json(silent=True) if request.is_json else None
    data = payload if isinstance(payload, dict) else request.form
    ident = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not ident or not password:
        return jsonify({"error": "username and password required"}), 400
    user = User.query.filter(func.lower(User.username) == ident.lower()).first()
    if not user or not user.check_password(password):
        logging.info("Login failed for identifier=%s", ident)
        return jsonify({"error": "invalid credentials"}), 401
    login_user(user)
    return jsonify({"id": user.id, "username": user.username, "role": user.role})


@bp.route("/logout")
@login_required
def logout():
    username = current_user.username
    logout_user()
    logging.info("User %s logged out", username)
    return jsonify({"logged_out": True})
