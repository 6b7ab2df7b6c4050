"""Cooldown guard: one roll per player per rolling window.

The guard only reads the ledger. Making check-then-append safe against racing
requests is the orchestrator's job (per-player lock plus the ledger's unique
``(player_id, cooldown_bucket)``); the guard answers "given the latest roll,
may this player roll at ``now``?".
"""

from __future__ import annotations

import threading
import weakref
from datetime import datetime, timedelta, timezone
from typing import Optional

from gacha.errors import ConfigError, CooldownActiveError
from gacha.models.ledger import RollRecord
from gacha.services.ledger import RollLedger


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how rolled_at is stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CooldownGuard:
    def __init__(self, ledger: RollLedger, window: timedelta = timedelta(hours=24)):
        if window <= timedelta(0):
            raise ConfigError("cooldown window must be positive")
        self.ledger = ledger
        self.window = window

    def retry_at(self, last: Optional[RollRecord]) -> Optional[datetime]:
        if last is None:
            return None
        return last.rolled_at + self.window

    def next_eligible_at(self, player_id: int) -> Optional[datetime]:
        return self.retry_at(self.ledger.last_roll_for(player_id))

    def is_eligible(self, player_id: int, now: datetime) -> bool:
        ready = self.next_eligible_at(player_id)
        return ready is None or now >= ready

    def check(self, player_id: int, now: datetime) -> Optional[RollRecord]:
        """Return the player's latest roll if they may roll again, else raise.

        The returned record is what the next append chains from.
        """
        last = self.ledger.last_roll_for(player_id)
        ready = self.retry_at(last)
        if ready is not None and now < ready:
            raise CooldownActiveError(ready, player_id=player_id, stage="cooldown_check")
        return last


class PlayerLocks:
    """Registry of per-player locks; different players never contend.

    Entries are weak: a player's lock lives only while some caller holds or
    waits on it, so the registry stays as small as the set of in-flight rolls.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def for_player(self, player_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(player_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[player_id] = lock
            return lock

    def __len__(self):
        return len(self._locks)


__all__ = ["CooldownGuard", "PlayerLocks", "utcnow"]
