from sqlalchemy.exc import OperationalError

from gacha.models.ledger import RollRecord
from gacha.services.retry import RetryPolicy
from tests.factories import StubRandom, create_user, login_as


def _locked(*args, **kwargs):
    raise OperationalError("INSERT", {}, Exception("database is locked"))


def test_roll_requires_login(client):
    resp = client.post("/gacha/roll")
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "unauthorized"}


def test_each_request_sees_its_own_login(test_app, player_client, player, roller, quiet_bridge):
    other = create_user("other_player", minecraft_name="Other")
    other_client = login_as(test_app.test_client(), other)
    anon = test_app.test_client()

    assert anon.get("/gacha/history").status_code == 401
    assert player_client.post("/gacha/roll").status_code == 200
    assert anon.post("/gacha/roll").status_code == 401
    assert other_client.post("/gacha/roll").status_code == 200

    rows = other_client.get("/gacha/history").get_json()["history"]
    assert [r["playerId"] for r in rows] == [other.id]


def test_roll_returns_reward(player_client, roller, quiet_bridge):
    roller.rng = StubRandom(0.5)  # 50.0 -> coins_small
    resp = player_client.post("/gacha/roll")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["rewardId"] == "coins_small"
    assert data["name"] == "50 KilluCoins"
    assert data["rarity"] == "common"
    assert data["rolledAt"] == "2025-03-01T12:00:00Z"
    assert isinstance(data["rollId"], int)


def test_second_roll_conflicts_with_retry_after(player_client, clock, quiet_bridge):
    assert player_client.post("/gacha/roll").status_code == 200
    clock.advance(hours=23, minutes=59)
    resp = player_client.post("/gacha/roll")
    assert resp.status_code == 409
    data = resp.get_json()
    assert data["error"] == "cooldown_active"
    assert data["retryAt"] == "2025-03-02T12:00:00Z"
    assert data["retryAfterSeconds"] == 60
    assert resp.headers["Retry-After"] == "60"


def test_roll_allowed_again_after_window(player_client, clock, quiet_bridge):
    assert player_client.post("/gacha/roll").status_code == 200
    clock.advance(hours=24, minutes=1)
    assert player_client.post("/gacha/roll").status_code == 200


def test_unlinked_account_forbidden(test_app, quiet_bridge):
    user = create_user("no_mc")
    client = login_as(test_app.test_client(), user)
    resp = client.post("/gacha/roll")
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "account_not_linked"
    assert RollRecord.query.count() == 0


def test_dispatch_failure_reports_pending_delivery(player_client, roller, quiet_bridge, monkeypatch):
    roller.retry = RetryPolicy(max_attempts=1, jitter_ms=0, sleep=lambda s: None)
    monkeypatch.setattr(roller.queue, "enqueue", _locked)
    resp = player_client.post("/gacha/roll")
    assert resp.status_code == 500
    data = resp.get_json()
    assert data["error"] == "delivery_pending"
    assert roller.ledger.get(data["rollId"]) is not None


def test_storage_failure_is_retryable_500(player_client, roller, quiet_bridge, monkeypatch):
    roller.retry = RetryPolicy(max_attempts=2, jitter_ms=0, sleep=lambda s: None)
    monkeypatch.setattr(roller.ledger, "append", _locked)
    resp = player_client.post("/gacha/roll")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "roll_failed", "retryable": True}


def test_history_newest_first_and_own_rows_only(player_client, player, roller, clock, quiet_bridge):
    other = create_user("other_player", minecraft_name="Other")
    roller.roll(other.id)
    player_client.post("/gacha/roll")
    clock.advance(days=1)
    player_client.post("/gacha/roll")

    resp = player_client.get("/gacha/history")
    assert resp.status_code == 200
    rows = resp.get_json()["history"]
    assert len(rows) == 2
    assert {r["playerId"] for r in rows} == {player.id}
    assert rows[0]["rolledAt"] > rows[1]["rolledAt"]

    limited = player_client.get("/gacha/history?limit=1").get_json()["history"]
    assert [r["id"] for r in limited] == [rows[0]["id"]]


def test_history_limit_validation(player_client):
    assert player_client.get("/gacha/history?limit=abc").status_code == 400
    assert player_client.get("/gacha/history?limit=0").status_code == 400
    assert player_client.get("/gacha/history?limit=5000").status_code == 200


def test_status_endpoint(player_client, quiet_bridge):
    assert player_client.get("/gacha/status").get_json() == {"eligible": True, "nextRollAt": None}
    player_client.post("/gacha/roll")
    data = player_client.get("/gacha/status").get_json()
    assert data["eligible"] is False
    assert data["nextRollAt"] == "2025-03-02T12:00:00Z"


def test_pool_is_public_and_complete(client):
    resp = client.get("/gacha/pool")
    assert resp.status_code == 200
    rewards = resp.get_json()["rewards"]
    assert len(rewards) == 10
    assert abs(sum(r["chance"] for r in rewards) - 100.0) < 1e-6
    assert rewards[0] == {"id": "xp_small", "name": "100 XP", "rarity": "common", "chance": 35.0}


def test_missing_roller_is_misconfiguration(test_app, player_client):
    test_app.extensions.pop("gacha")
    assert player_client.post("/gacha/roll").status_code == 422
    assert player_client.get("/gacha/status").status_code == 422
