"""Dispatch queue: durable outbox of commands for the game-server bridge.

Entries are produced here and consumed by the bridge, which polls pending rows
and reports each one delivered or failed. Enqueue is idempotent per roll, so
an enqueue whose outcome is unknown (timeout, crash) is resolved by calling
it again rather than by rolling again.

Status only moves forward:
    pending  -> delivered | failed
    failed   -> delivered   (bridge retried on its side and succeeded)
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from gacha import db, socketio
from gacha.errors import PersistenceError, QueueEntryNotFound, QueueTransitionError
from gacha.logging_utils import get_logger
from gacha.models.dispatch import DispatchQueueEntry, DispatchStatus

log = get_logger("gacha.dispatch")

_ALLOWED = {
    DispatchStatus.PENDING.value: {DispatchStatus.DELIVERED.value, DispatchStatus.FAILED.value},
    DispatchStatus.FAILED.value: {DispatchStatus.DELIVERED.value},
    DispatchStatus.DELIVERED.value: set(),
}

BRIDGE_NAMESPACE = "/bridge"


class DispatchQueue:
    def __init__(self, clock: Callable[[], datetime]):
        self.clock = clock

    # ----------------------- Writes -----------------------

    def enqueue(self, roll_record_id: int, commands: Sequence[str]) -> List[DispatchQueueEntry]:
        """Write one entry per command for a roll, or return the ones already written.

        Re-raises OperationalError for the retry policy; other storage failures
        become PersistenceError.
        """
        existing = {e.position: e for e in self.for_roll(roll_record_id)}
        created = 0
        try:
            for position, command in enumerate(commands):
                if position in existing:
                    continue
                entry = DispatchQueueEntry(
                    roll_record_id=roll_record_id,
                    position=position,
                    command=command,
                    status=DispatchStatus.PENDING.value,
                    created_at=self.clock(),
                )
                db.session.add(entry)
                existing[position] = entry
                created += 1
            if created:
                db.session.commit()
        except IntegrityError:
            # A concurrent enqueue for the same roll won; its rows are the answer
            db.session.rollback()
            return self.for_roll(roll_record_id)
        except OperationalError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f"enqueue failed for roll {roll_record_id}: {exc}")
        if created:
            log.info(event="commands_queued", roll_id=roll_record_id, count=created)
            self.notify_bridge()
        return [existing[p] for p in sorted(existing)]

    def mark_delivered(self, entry_id: int) -> DispatchQueueEntry:
        return self._transition(entry_id, DispatchStatus.DELIVERED.value)

    def mark_failed(self, entry_id: int, reason: Optional[str] = None) -> DispatchQueueEntry:
        return self._transition(entry_id, DispatchStatus.FAILED.value, reason=reason)

    def _transition(self, entry_id: int, target: str, reason: Optional[str] = None) -> DispatchQueueEntry:
        entry = self.get(entry_id)
        if entry is None:
            raise QueueEntryNotFound(f"queue entry {entry_id} not found")
        if entry.status == target:
            return entry  # repeated report from the bridge
        if target not in _ALLOWED.get(entry.status, set()):
            raise QueueTransitionError(f"queue entry {entry_id} cannot move from {entry.status} to {target}")
        entry.status = target
        entry.processed_at = self.clock()
        if target == DispatchStatus.FAILED.value:
            entry.failure_reason = (reason or "unspecified")[:2000]
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f"status update failed for queue entry {entry_id}: {exc}")
        if target == DispatchStatus.FAILED.value:
            # A failed delivery means a player is owed a reward
            log.error(event="dispatch_failed", entry_id=entry_id, roll_id=entry.roll_record_id, reason=entry.failure_reason)
        else:
            log.info(event="dispatch_delivered", entry_id=entry_id, roll_id=entry.roll_record_id)
        return entry

    def notify_bridge(self):
        """Nudge connected bridges to poll now. Bridges poll anyway, so a lost nudge is harmless."""
        try:
            socketio.emit("refresh_commands", {}, namespace=BRIDGE_NAMESPACE)
        except Exception as exc:  # noqa: BLE001 - transport errors vary by async mode
            log.debug(event="bridge_notify_failed", error=type(exc).__name__)

    # ----------------------- Reads -----------------------

    def get(self, entry_id: int) -> Optional[DispatchQueueEntry]:
        return db.session.get(DispatchQueueEntry, entry_id)

    def for_roll(self, roll_record_id: int) -> List[DispatchQueueEntry]:
        return (
            DispatchQueueEntry.query.filter_by(roll_record_id=roll_record_id)
            .order_by(DispatchQueueEntry.position.asc())
            .all()
        )

    def pending(self, limit: int = 50) -> List[DispatchQueueEntry]:
        """Oldest pending entries first, the order the bridge should run them."""
        return self.by_status(DispatchStatus.PENDING.value, limit)

    def by_status(self, status: Optional[str], limit: int = 50) -> List[DispatchQueueEntry]:
        q = DispatchQueueEntry.query
        if status:
            q = q.filter_by(status=status)
        return q.order_by(DispatchQueueEntry.id.asc()).limit(limit).all()


__all__ = ["BRIDGE_NAMESPACE", "DispatchQueue"]
