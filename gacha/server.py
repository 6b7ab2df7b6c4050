"""
project: CrystalTides Gacha
module: server.py
License: MIT

Server bootstrap and stdlib logging setup.

``start_server`` runs the Flask app under Socket.IO so the /bridge namespace
can push refresh nudges. Werkzeug, SQLAlchemy and unhandled-exception
tracebacks go through stdlib logging into ``instance/app.log``; roll events
keep using the key=value logger in ``gacha.logging_utils``.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from flask import Flask

from gacha import create_app, socketio
from gacha.logging_utils import get_logger

_STDLIB_LEVELS = {"debug": logging.DEBUG, "info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}

log = get_logger("gacha.server")


def start_server(host="0.0.0.0", port=5000, debug: bool = False, app: Flask | None = None):  # pragma: no cover
    """Serve ``app`` (or a freshly built one) until interrupted.

    When debug=True, Flask's debugger and reloader provide verbose tracebacks.
    """
    app = app or create_app()
    _configure_logging(app)
    roller = app.extensions["gacha"]
    log.info(
        event="server_start",
        host=host,
        port=port,
        async_mode=socketio.async_mode,
        rewards=len(roller.pool),
        cooldown_hours=roller.guard.window.total_seconds() / 3600,
        bridge="enabled" if app.config.get("BRIDGE_TOKEN") else "disabled",
    )
    try:
        socketio.run(app, host=host, port=port, debug=debug)
    except KeyboardInterrupt:
        print("\n[INFO] Server stopped by user (Ctrl+C)")
        sys.exit(0)


def _configure_logging(app: Flask):
    """Send stdlib logging to the console and to a rotating instance/app.log.

    Level follows GACHA_LOG_LEVEL. Existing root handlers are replaced so a
    second call does not duplicate output.
    """
    log_dir = app.instance_path
    try:
        os.makedirs(log_dir, exist_ok=True)
    except OSError:
        pass
    log_path = os.path.join(log_dir, "app.log")
    level = _STDLIB_LEVELS.get(os.getenv("GACHA_LOG_LEVEL", "info").lower(), logging.INFO)
    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3)
    console = logging.StreamHandler()
    for handler in (file_handler, console):
        handler.setLevel(level)
        handler.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(file_handler)
    root.addHandler(console)
