"""Error taxonomy for the reward roller.

Every error carries the player it concerns (when known) and the roll stage it
was raised from, so log lines and support tickets can say how far a roll got.
Only CooldownActiveError is an ordinary outcome; everything else is logged.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class GachaError(Exception):
    def __init__(self, message: str = "", player_id: Optional[int] = None, stage: Optional[str] = None):
        super().__init__(message)
        self.player_id = player_id
        self.stage = stage


class ConfigError(GachaError):
    """Reward pool or roller configuration is invalid (startup-fatal)."""


class CooldownActiveError(GachaError):
    """Player already rolled inside the current cooldown window."""

    def __init__(self, retry_at: datetime, player_id: Optional[int] = None, stage: Optional[str] = None):
        super().__init__(f"cooldown active until {retry_at.isoformat()}", player_id=player_id, stage=stage)
        self.retry_at = retry_at


class UnresolvedIdentityError(GachaError):
    """The player's in-game identity could not be resolved (account not linked)."""


class PersistenceError(GachaError):
    """Ledger or queue storage failed after retries."""


class DispatchInconsistencyError(GachaError):
    """Roll committed to the ledger but its commands could not be queued."""

    def __init__(self, roll_record_id: int, player_id: Optional[int] = None, stage: Optional[str] = None):
        super().__init__(
            f"roll {roll_record_id} recorded but not dispatched",
            player_id=player_id,
            stage=stage,
        )
        self.roll_record_id = roll_record_id


class QueueEntryNotFound(GachaError):
    pass


class QueueTransitionError(GachaError):
    """Requested status change would move a queue entry backwards."""


__all__ = [
    "GachaError",
    "ConfigError",
    "CooldownActiveError",
    "UnresolvedIdentityError",
    "PersistenceError",
    "DispatchInconsistencyError",
    "QueueEntryNotFound",
    "QueueTransitionError",
]
