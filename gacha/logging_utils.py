"""Structured event logger for roll and dispatch events.

Each call prints one line of key=value pairs with a timestamp and level, so
support can grep a player's whole story (``player_id=42``) or a single roll
(``roll_id=1337``) out of the server output. Values containing spaces, quotes
or ``=`` are double-quoted; set GACHA_LOG_JSON=1 for one JSON object per line.

Usage:
    from gacha.logging_utils import get_logger
    log = get_logger("gacha.roller")
    log.info(event="roll_completed", player_id=7, reward_id="coins_small")

    plog = log.bind(player_id=7)      # context repeated on every line
    plog.error(event="roll_failed", stage="recorded")

Reserved keys: level, ts, logger. Errors go to stderr, everything else to stdout.
"""

from __future__ import annotations

import json
import os
import sys
import time
from datetime import datetime

LEVELS = {"debug": 10, "info": 20, "warn": 30, "error": 40}
CURRENT_LEVEL = LEVELS.get(os.getenv("GACHA_LOG_LEVEL", "info").lower(), 20)
JSON_MODE = os.getenv("GACHA_LOG_JSON", "0") in ("1", "true", "TRUE", "yes", "on")

_NEEDS_QUOTES = (" ", "\t", '"', "=")


def _value(v):
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (int, float)):
        return str(v)
    if isinstance(v, datetime):
        return v.isoformat() + ("Z" if v.tzinfo is None else "")
    s = str(v).replace("\n", "\\n")
    if not s or any(ch in s for ch in _NEEDS_QUOTES):
        return json.dumps(s)
    return s


def _format(level: str, fields: dict) -> str:
    ts = int(time.time())
    if JSON_MODE:
        rec = {"level": level, "ts": ts}
        rec.update((k, v) for k, v in fields.items() if v is not None)
        return json.dumps(rec, separators=(",", ":"), default=str)
    parts = [f"level={level}", f"ts={ts}"]
    parts.extend(f"{k}={_value(v)}" for k, v in fields.items() if v is not None)
    return " ".join(parts)


class _Logger:
    def __init__(self, name: str, context: dict | None = None):
        self.name = name
        self.context = context or {}

    def bind(self, **context) -> "_Logger":
        """Return a logger that adds ``context`` to every line it writes."""
        return _Logger(self.name, {**self.context, **context})

    def _log(self, lvl: str, fields: dict):
        if LEVELS[lvl] < CURRENT_LEVEL:
            return
        merged = {**self.context, **fields}
        merged.setdefault("logger", self.name)
        print(_format(lvl, merged), file=sys.stderr if lvl == "error" else sys.stdout)

    def debug(self, **fields):
        self._log("debug", fields)

    def info(self, **fields):
        self._log("info", fields)

    def warn(self, **fields):
        self._log("warn", fields)

    def error(self, **fields):
        self._log("error", fields)


_LOGGER_CACHE: dict[str, _Logger] = {}


def get_logger(name: str) -> _Logger:
    if name not in _LOGGER_CACHE:
        _LOGGER_CACHE[name] = _Logger(name)
    return _LOGGER_CACHE[name]


log = get_logger("gacha")
