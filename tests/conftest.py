import os
import random
import sys

import pytest
from flask import g, has_app_context
from flask.testing import FlaskClient

# Ensure repository root importable early
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from gacha import create_app, db  # noqa: E402
from tests.factories import BRIDGE_TOKEN, FakeClock, create_user, login_as  # noqa: E402


@pytest.fixture()
def clock():
    return FakeClock()


class SessionClient(FlaskClient):
    """Test client that resolves the logged-in user afresh on every request.

    Requests reuse the app context pushed by the fixtures, so the user
    Flask-Login caches on ``g`` would otherwise leak between requests.
    """

    def open(self, *args, **kwargs):
        if has_app_context():
            g.pop("_login_user", None)
        return super().open(*args, **kwargs)


@pytest.fixture()
def test_app(tmp_path, clock):
    # File-backed SQLite so threaded tests share one database
    db_path = (tmp_path / "gacha.db").as_posix()
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "BRIDGE_TOKEN": BRIDGE_TOKEN,
            "GACHA_CLOCK": clock,
            "GACHA_RNG": random.Random(1234),
        }
    )
    app.test_client_class = SessionClient
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture(autouse=True)
def _push_app_context(request):
    if "test_app" not in request.fixturenames:
        yield
        return
    app = request.getfixturevalue("test_app")
    ctx = app.app_context()
    ctx.push()
    try:
        yield
    finally:
        ctx.pop()


@pytest.fixture()
def roller(test_app):
    return test_app.extensions["gacha"]


@pytest.fixture()
def client(test_app):
    return test_app.test_client()


@pytest.fixture()
def quiet_bridge(monkeypatch):
    """Record refresh_commands emits instead of sending them."""
    from gacha import socketio

    emitted = []
    monkeypatch.setattr(socketio, "emit", lambda event, *a, **k: emitted.append((event, k.get("namespace"))))
    return emitted


@pytest.fixture()
def player(test_app):
    return create_user("steve_player", minecraft_name="Steve")


@pytest.fixture()
def player_client(client, player):
    return login_as(client, player)


@pytest.fixture()
def admin_client(test_app):
    admin = create_user("admin_user", role="admin")
    return login_as(test_app.test_client(), admin)


@pytest.fixture()
def bridge_headers():
    return {"X-Bridge-Token": BRIDGE_TOKEN}
