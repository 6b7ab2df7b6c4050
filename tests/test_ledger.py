from datetime import timedelta

import pytest

from gacha.models.ledger import RollRecord
from gacha.rewards.pool import DEFAULT_POOL, load_pool
from gacha.services.ledger import BucketTaken, RollLedger
from tests.factories import START, create_user

POOL = load_pool(DEFAULT_POOL)


@pytest.fixture()
def ledger(test_app):
    return RollLedger()


def test_append_snapshots_reward(ledger):
    user = create_user("snap", minecraft_name="Snap")
    rec = ledger.append(user.id, POOL.get("item_diamond"), START)
    assert rec.id is not None
    assert rec.reward_id == "item_diamond"
    assert rec.reward_name == "Diamond"
    assert rec.rarity == "rare"
    assert rec.cooldown_bucket == 1
    assert rec.to_dict()["rolledAt"] == "2025-03-01T12:00:00Z"


def test_history_newest_first_and_limited(ledger):
    user = create_user("hist", minecraft_name="Hist")
    prev = None
    for day in range(5):
        prev = ledger.append(user.id, POOL[day], START + timedelta(days=day), previous=prev)
    rows = ledger.history_for(user.id, limit=3)
    assert [r.reward_id for r in rows] == [POOL[4].id, POOL[3].id, POOL[2].id]
    assert ledger.last_roll_for(user.id).cooldown_bucket == 5


def test_history_is_scoped_to_player(ledger):
    a = create_user("alpha", minecraft_name="Alpha")
    b = create_user("bravo", minecraft_name="Bravo")
    ledger.append(a.id, POOL[0], START)
    ledger.append(b.id, POOL[1], START)
    assert [r.player_id for r in ledger.history_for(a.id)] == [a.id]


def test_second_append_from_same_previous_is_rejected(ledger):
    user = create_user("racer", minecraft_name="Racer")
    ledger.append(user.id, POOL[0], START)
    with pytest.raises(BucketTaken) as exc:
        ledger.append(user.id, POOL[1], START)
    assert exc.value.bucket == 1
    assert RollRecord.query.filter_by(player_id=user.id).count() == 1


def test_undispatched_lists_rolls_without_queue_entries(ledger, roller, quiet_bridge):
    user = create_user("orphan", minecraft_name="Orphan")
    first = ledger.append(user.id, POOL[0], START)
    second = ledger.append(user.id, POOL[1], START + timedelta(days=1), previous=first)
    roller.queue.enqueue(first.id, ["grant-xp Orphan 100"])
    assert [r.id for r in ledger.undispatched()] == [second.id]
