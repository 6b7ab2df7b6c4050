"""Roll ledger: append-only history of completed rolls.

The ledger is the source of truth for cooldowns and for support disputes.
``append`` is the only write; nothing here updates or deletes a record.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from gacha import db
from gacha.errors import PersistenceError
from gacha.models.dispatch import DispatchQueueEntry
from gacha.models.ledger import RollRecord
from gacha.rewards.pool import RewardDefinition


class BucketTaken(Exception):
    """Another roll already claimed the cooldown bucket this append wanted."""

    def __init__(self, player_id: int, bucket: int):
        super().__init__(f"player {player_id} bucket {bucket} already recorded")
        self.player_id = player_id
        self.bucket = bucket


class RollLedger:
    def append(
        self,
        player_id: int,
        reward: RewardDefinition,
        rolled_at: datetime,
        previous: Optional[RollRecord] = None,
        roll_token: Optional[str] = None,
    ) -> RollRecord:
        """Insert and commit a RollRecord following ``previous``.

        Raises BucketTaken when a concurrent roll committed first, re-raises
        OperationalError for the retry policy, and wraps any other storage
        failure in PersistenceError. Pass the same ``roll_token`` on every
        attempt of one roll so a commit whose reply was lost can be found
        with ``by_token``.
        """
        bucket = (previous.cooldown_bucket + 1) if previous is not None else 1
        record = RollRecord(
            player_id=player_id,
            reward_id=reward.id,
            reward_name=reward.name,
            rarity=reward.rarity.value,
            rolled_at=rolled_at,
            cooldown_bucket=bucket,
            roll_token=roll_token or uuid.uuid4().hex,
        )
        try:
            db.session.add(record)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise BucketTaken(player_id, bucket)
        except OperationalError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f"ledger append failed: {exc}", player_id=player_id)
        return record

    def last_roll_for(self, player_id: int) -> Optional[RollRecord]:
        return (
            RollRecord.query.filter_by(player_id=player_id)
            .order_by(RollRecord.cooldown_bucket.desc())
            .first()
        )

    def history_for(self, player_id: int, limit: int = 20) -> List[RollRecord]:
        """Most recent rolls first."""
        return (
            RollRecord.query.filter_by(player_id=player_id)
            .order_by(RollRecord.rolled_at.desc(), RollRecord.id.desc())
            .limit(limit)
            .all()
        )

    def by_token(self, roll_token: str) -> Optional[RollRecord]:
        return RollRecord.query.filter_by(roll_token=roll_token).first()

    def get(self, record_id: int) -> Optional[RollRecord]:
        return db.session.get(RollRecord, record_id)

    def undispatched(self, limit: int = 100) -> List[RollRecord]:
        """Committed rolls that have no queue entries yet (oldest first)."""
        has_entry = db.session.query(DispatchQueueEntry.id).filter(
            DispatchQueueEntry.roll_record_id == RollRecord.id
        )
        return (
            RollRecord.query.filter(~has_entry.exists())
            .order_by(RollRecord.id.asc())
            .limit(limit)
            .all()
        )


__all__ = ["BucketTaken", "RollLedger"]
