"""Test data factories to reduce boilerplate in tests.

Usage examples:
    from tests.factories import create_user, reward_entry, StubRandom

    def test_something(test_app):
        user = create_user('alice', minecraft_name='Alice_01')
        pool = load_pool([reward_entry('a', 60), reward_entry('b', 40)])
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from werkzeug.security import generate_password_hash

from gacha import db
from gacha.models.models import User

START = datetime(2025, 3, 1, 12, 0, 0)
BRIDGE_TOKEN = "bridge-secret"


class FakeClock:
    """Callable clock the roller reads instead of the wall clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)
        return self.now


def create_user(
    username: str,
    password: str = "pass",
    role: str = "user",
    minecraft_name: Optional[str] = None,
) -> User:
    user = User.query.filter_by(username=username).first()
    if user:
        return user
    user = User(
        username=username,
        password=generate_password_hash(password),
        role=role,
        minecraft_name=minecraft_name,
    )
    db.session.add(user)
    db.session.commit()
    return user


def login_as(client, user: User):
    """Attach a Flask-Login session for ``user`` to the test client."""
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user.id)
        sess["_fresh"] = True
    return client


def reward_entry(
    reward_id: str,
    weight: float,
    rarity: str = "common",
    effect_type: str = "currency",
    effect_value=10,
    name: Optional[str] = None,
) -> dict:
    return {
        "id": reward_id,
        "name": name or reward_id.replace("_", " ").title(),
        "rarity": rarity,
        "effectType": effect_type,
        "effectValue": effect_value,
        "weight": weight,
    }


class StubRandom:
    """random.Random stand-in returning queued values from random(); the last one repeats."""

    def __init__(self, *values: float):
        self.values = list(values) or [0.0]

    def random(self) -> float:
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]
