"""
project: CrystalTides Gacha
module: __init__.py
License: MIT

Flask application factory and core extensions setup.

This module wires together the Flask app, SQLAlchemy, Flask-Login, and
Flask-SocketIO, then builds the reward roller (pool, ledger, cooldown guard,
dispatch queue) and stores it in ``app.extensions["gacha"]``. Configuration is
sourced from environment variables with reasonable defaults for development.
A local `instance/` directory is used for SQLite and other runtime data.
"""

import logging
import os
import random
import sqlite3
import uuid
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_login import LoginManager
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

# Load .env if present so `SECRET_KEY`, `DATABASE_URL`, etc. can be supplied
# without exporting shell variables during development.
load_dotenv()

__version__ = "0.4.0"

db = SQLAlchemy(session_options={"expire_on_commit": False})
login_manager = LoginManager()
socketio = SocketIO()


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: D401
    """Apply WAL + busy timeout so concurrent roll requests wait instead of failing."""
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=10000")  # 10 seconds
    cursor.close()


@login_manager.user_loader
def load_user(user_id):  # pragma: no cover - simple loader
    from gacha.models.models import User

    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def _unauthorized():
    return jsonify({"error": "unauthorized"}), 401


def _default_database_url(instance_path: str) -> str:
    # During pytest runs, isolate to a separate database file
    is_pytest = bool(os.getenv("PYTEST_CURRENT_TEST"))
    db_filename = "gacha_test.db" if is_pytest else "gacha.db"
    db_path = Path(instance_path) / db_filename
    # Use POSIX path for SQLAlchemy URI compatibility across OS
    return f"sqlite:///{db_path.as_posix()}"


def create_app(overrides: dict | None = None) -> Flask:
    """Build a configured Flask app with the reward roller attached.

    ``overrides`` is applied on top of the environment-derived config, which is
    how tests point the app at a throwaway database or inject a pool.

    Raises ConfigError when the reward pool is invalid: a misconfigured pool
    must stop the process rather than serve skewed odds.
    """
    from gacha.config import GachaConfig
    from gacha.rewards.pool import DEFAULT_POOL, load_pool, load_pool_file

    # Create the Flask app with instance-relative config so we can use ./instance
    # for local data (e.g., SQLite database at ./instance/gacha.db)
    app = Flask(__name__, instance_relative_config=True)
    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError:
        # Read-only deployments supply DATABASE_URL explicitly
        pass

    database_url = os.getenv("DATABASE_URL") or _default_database_url(app.instance_path)
    app.config.update(
        SECRET_KEY=os.getenv("SECRET_KEY", "dev-secret-change-me"),
        SQLALCHEMY_DATABASE_URI=database_url,
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        BRIDGE_TOKEN=os.getenv("BRIDGE_TOKEN"),
        GACHA=GachaConfig.from_env(),
    )
    if overrides:
        app.config.update(overrides)

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
        engine_opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        engine_opts.setdefault(
            "connect_args",
            {
                "timeout": 10,  # busy timeout (seconds) for sqlite
                "check_same_thread": False,  # request threads share the pool
            },
        )
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_opts

    db.init_app(app)
    login_manager.init_app(app)
    # Import websocket handlers before init_app so every app instance gets them (side-effect)
    from gacha.websockets import bridge as _ws_bridge  # noqa: F401,E402

    # Let Flask-SocketIO select best async_mode based on installed deps (eventlet/gevent/threading)
    socketio.init_app(
        app,
        async_mode=os.getenv("SOCKETIO_ASYNC_MODE") or None,
        cors_allowed_origins=os.getenv("CORS_ALLOWED_ORIGINS", "*"),
        ping_interval=20,
        ping_timeout=10,
    )

    cfg = app.config["GACHA"]
    pool = app.config.get("GACHA_POOL")
    if pool is None:
        pool = load_pool_file(cfg.pool_path) if cfg.pool_path else load_pool(DEFAULT_POOL)

    from gacha.services.cooldown import utcnow
    from gacha.services.roller import build_roller

    # GACHA_RNG / GACHA_CLOCK let tests pin the draw and the time
    app.extensions["gacha"] = build_roller(
        pool,
        cfg,
        rng=app.config.get("GACHA_RNG") or random.SystemRandom(),
        clock=app.config.get("GACHA_CLOCK") or utcnow,
    )

    # Register HTTP blueprints
    from gacha.routes import auth  # noqa: E402
    from gacha.routes.admin import bp_admin  # noqa: E402
    from gacha.routes.bridge_api import bp_bridge  # noqa: E402
    from gacha.routes.gacha_api import bp_gacha  # noqa: E402

    app.register_blueprint(auth.bp)
    app.register_blueprint(bp_gacha)
    app.register_blueprint(bp_bridge)
    app.register_blueprint(bp_admin)

    # Ensure model metadata is loaded before create_all
    from gacha import models as _models  # noqa: F401

    with app.app_context():
        db.create_all()

    @app.errorhandler(500)
    def internal_error(e):
        error_id = uuid.uuid4().hex[:8]
        logging.exception("Unhandled exception (id=%s)", error_id)
        return jsonify({"error": "internal", "error_id": error_id}), 500

    return app
