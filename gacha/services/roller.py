"""
project: CrystalTides Gacha
module: roller.py
License: MIT

Roll orchestration: cooldown check, weighted pick, ledger write, dispatch.

A roll moves through these stages; the stage reached is attached to every
error and log line so support can tell whether a reward is owed:

    requested -> cooldown_checked -> reward_selected -> recorded
              -> dispatched -> completed

Guarantees:
  * The target identity is resolved and the commands are built before
    anything is written, so an unlinked account never produces a record.
  * Check-and-append is serialized per player (in-process lock) and backed by
    the ledger's unique (player_id, cooldown_bucket), so racing requests
    cannot both win inside one window even across processes.
  * Nothing is queued unless the ledger write committed.
  * Every attempt of one roll carries the same roll token, so a commit whose
    reply was lost is picked up as this roll's record rather than read as a
    competing roll.
  * If the ledger committed but enqueue kept failing, the roll is logged as a
    reconciliation item and DispatchInconsistencyError is raised. The fix is
    ``redispatch``/``reconcile`` (idempotent, keyed by roll id), never a
    second roll.
"""

from __future__ import annotations

import enum
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import OperationalError

from gacha import db
from gacha.errors import (
    CooldownActiveError,
    DispatchInconsistencyError,
    GachaError,
    PersistenceError,
    UnresolvedIdentityError,
)
from gacha.logging_utils import get_logger
from gacha.models.dispatch import DispatchQueueEntry
from gacha.models.ledger import RollRecord
from gacha.rewards.pool import RewardDefinition, RewardPool
from gacha.rewards.selector import draw_from, select
from gacha.services.cooldown import CooldownGuard, PlayerLocks, utcnow
from gacha.services.dispatch import DispatchQueue
from gacha.services.effects import IdentityResolver, to_commands
from gacha.services.ledger import BucketTaken, RollLedger
from gacha.services.retry import RetryPolicy

log = get_logger("gacha.roller")


class RollStage(str, enum.Enum):
    REQUESTED = "requested"
    COOLDOWN_CHECKED = "cooldown_checked"
    REWARD_SELECTED = "reward_selected"
    RECORDED = "recorded"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"


@dataclass
class RollOutcome:
    record: RollRecord
    reward: RewardDefinition
    entries: List[DispatchQueueEntry]
    draw: float

    def to_dict(self):
        return {
            "rewardId": self.reward.id,
            "name": self.reward.name,
            "rarity": self.reward.rarity.value,
            "rollId": self.record.id,
            "rolledAt": self.record.rolled_at.isoformat() + "Z",
        }


@dataclass
class ReconcileReport:
    requeued: List[int] = field(default_factory=list)
    skipped: Dict[int, str] = field(default_factory=dict)

    def to_dict(self):
        return {"requeued": self.requeued, "skipped": {str(k): v for k, v in self.skipped.items()}}


class RollOrchestrator:
    def __init__(
        self,
        pool: RewardPool,
        ledger: RollLedger,
        guard: CooldownGuard,
        queue: DispatchQueue,
        resolver: IdentityResolver,
        rng: random.Random,
        clock: Callable[[], datetime] = utcnow,
        retry: Optional[RetryPolicy] = None,
    ):
        self.pool = pool
        self.ledger = ledger
        self.guard = guard
        self.queue = queue
        self.resolver = resolver
        self.rng = rng
        self.clock = clock
        self.retry = retry or RetryPolicy()
        self.locks = PlayerLocks()

    def roll(self, player_id: int) -> RollOutcome:
        plog = log.bind(player_id=player_id)
        stage = RollStage.REQUESTED
        try:
            target = self.resolver.resolve(player_id)
            with self.locks.for_player(player_id):
                # End any read transaction so the cooldown check sees the latest commit
                db.session.rollback()
                now = self.clock()
                previous = self.guard.check(player_id, now)
                stage = RollStage.COOLDOWN_CHECKED

                draw = draw_from(self.rng)
                reward = select(self.pool, draw)
                commands = to_commands(reward, target)
                stage = RollStage.REWARD_SELECTED

                record = self._record(player_id, reward, now, previous)
        except CooldownActiveError as exc:
            exc.player_id, exc.stage = player_id, exc.stage or stage.value
            raise
        except GachaError as exc:
            exc.player_id = exc.player_id or player_id
            exc.stage = exc.stage or stage.value
            plog.error(
                event="roll_failed",
                stage=exc.stage,
                error=type(exc).__name__,
                detail=str(exc),
            )
            raise

        entries = self._dispatch(record, commands)

        plog.info(
            event="roll_completed",
            stage=RollStage.COMPLETED.value,
            roll_id=record.id,
            reward_id=reward.id,
            rarity=reward.rarity.value,
            draw=round(draw, 6),
            commands=len(entries),
        )
        return RollOutcome(record=record, reward=reward, entries=entries, draw=draw)

    def _record(self, player_id: int, reward: RewardDefinition, now: datetime, previous) -> RollRecord:
        token = uuid.uuid4().hex
        try:
            return self.retry.run(
                lambda: self.ledger.append(player_id, reward, now, previous, roll_token=token),
                name="ledger.append",
                player_id=player_id,
            )
        except BucketTaken:
            own = self._committed(token, player_id)
            if own is not None:
                return own
            # A concurrent request for this player committed first
            winner = self.ledger.last_roll_for(player_id)
            retry_at = self.guard.retry_at(winner) or (now + self.guard.window)
            raise CooldownActiveError(retry_at, player_id=player_id, stage=RollStage.COOLDOWN_CHECKED.value)
        except OperationalError as exc:
            own = self._committed(token, player_id)
            if own is not None:
                return own
            raise PersistenceError(
                f"ledger unavailable: {exc}", player_id=player_id, stage=RollStage.REWARD_SELECTED.value
            )

    def _committed(self, token: str, player_id: int) -> Optional[RollRecord]:
        """Find this roll's own row when a commit landed but its reply was lost."""
        try:
            record = self.ledger.by_token(token)
        except OperationalError:
            db.session.rollback()
            return None
        if record is not None:
            log.bind(player_id=player_id, roll_id=record.id).warn(
                event="ledger_commit_recovered",
                stage=RollStage.RECORDED.value,
                reward_id=record.reward_id,
            )
        return record

    def _dispatch(self, record: RollRecord, commands: List[str]) -> List[DispatchQueueEntry]:
        try:
            return self.retry.run(
                lambda: self.queue.enqueue(record.id, commands),
                name="queue.enqueue",
                roll_id=record.id,
            )
        except (OperationalError, PersistenceError) as exc:
            log.bind(player_id=record.player_id, roll_id=record.id).error(
                event="reconciliation_required",
                reward_id=record.reward_id,
                stage=RollStage.RECORDED.value,
                detail=str(exc),
            )
            raise DispatchInconsistencyError(
                record.id, player_id=record.player_id, stage=RollStage.RECORDED.value
            ) from exc

    def redispatch(self, roll_record_id: int) -> List[DispatchQueueEntry]:
        """Queue the commands of an already-recorded roll. Safe to repeat."""
        record = self.ledger.get(roll_record_id)
        if record is None:
            raise PersistenceError(f"roll {roll_record_id} not found")
        reward = self.pool.get(record.reward_id)
        if reward is None:
            raise PersistenceError(
                f"roll {roll_record_id} references reward {record.reward_id!r} missing from the pool",
                player_id=record.player_id,
                stage=RollStage.RECORDED.value,
            )
        target = self.resolver.resolve(record.player_id)
        return self._dispatch(record, to_commands(reward, target))

    def reconcile(self, limit: int = 100) -> ReconcileReport:
        """Queue every committed roll that has no queue entries yet."""
        report = ReconcileReport()
        for record in self.ledger.undispatched(limit):
            try:
                self.redispatch(record.id)
            except (PersistenceError, UnresolvedIdentityError, DispatchInconsistencyError) as exc:
                report.skipped[record.id] = str(exc)
                log.error(
                    event="reconcile_skipped",
                    player_id=record.player_id,
                    roll_id=record.id,
                    error=type(exc).__name__,
                    detail=str(exc),
                )
                continue
            report.requeued.append(record.id)
        log.info(event="reconcile_done", requeued=len(report.requeued), skipped=len(report.skipped))
        return report

    def status_for(self, player_id: int) -> Dict[str, object]:
        now = self.clock()
        ready = self.guard.next_eligible_at(player_id)
        eligible = ready is None or now >= ready
        return {
            "eligible": eligible,
            "nextRollAt": None if eligible else ready.isoformat() + "Z",
        }


def build_roller(pool: RewardPool, cfg, rng: random.Random, clock: Callable[[], datetime] = utcnow) -> RollOrchestrator:
    """Assemble the orchestrator and its collaborators from a GachaConfig."""
    ledger = RollLedger()
    return RollOrchestrator(
        pool=pool,
        ledger=ledger,
        guard=CooldownGuard(ledger, window=timedelta(hours=cfg.cooldown_hours)),
        queue=DispatchQueue(clock=clock),
        resolver=IdentityResolver(),
        rng=rng,
        clock=clock,
        retry=RetryPolicy.from_config(cfg),
    )


__all__ = ["ReconcileReport", "RollOrchestrator", "RollOutcome", "RollStage", "build_roller"]
