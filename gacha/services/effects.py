"""Effect translation: won reward -> game-server command strings.

Commands are addressed by the player's linked Minecraft name. Names are
validated, never cleaned up: stripping characters from a bad name could turn
it into somebody else's name and hand them the reward.

Command table (one command per reward today; the return type is a list so an
effect can fan out without changing callers):

  currency    grant-currency <target> <amount>
  rank        grant-rank <target> <rank>
  item        grant-item <target> <item> 1
  experience  grant-xp <target> <amount>
  crate       grant-crate <target> <crate> 1
"""

from __future__ import annotations

import re
from typing import Callable, Dict, List

from gacha import db
from gacha.errors import UnresolvedIdentityError
from gacha.models.models import User
from gacha.rewards.pool import EffectType, RewardDefinition

MINECRAFT_NAME_RE = re.compile(r"^[A-Za-z0-9_]{3,16}$")

COMMAND_TEMPLATES: Dict[EffectType, Callable[[str, object], str]] = {
    EffectType.CURRENCY: lambda target, value: f"grant-currency {target} {value}",
    EffectType.RANK: lambda target, value: f"grant-rank {target} {value}",
    EffectType.ITEM: lambda target, value: f"grant-item {target} {value} 1",
    EffectType.EXPERIENCE: lambda target, value: f"grant-xp {target} {value}",
    EffectType.CRATE: lambda target, value: f"grant-crate {target} {value} 1",
}

# Import-time exhaustiveness check: a new EffectType without a template fails loudly
_missing = set(EffectType) - set(COMMAND_TEMPLATES)
if _missing:  # pragma: no cover
    raise RuntimeError(f"no command template for effect types: {sorted(m.value for m in _missing)}")


def is_valid_target(name: str | None) -> bool:
    return bool(name) and MINECRAFT_NAME_RE.fullmatch(name) is not None


def to_commands(reward: RewardDefinition, target_identity: str) -> List[str]:
    if not is_valid_target(target_identity):
        raise UnresolvedIdentityError(f"invalid command target {target_identity!r}")
    template = COMMAND_TEMPLATES[reward.effect_type]
    return [template(target_identity, reward.effect_value)]


class IdentityResolver:
    """Maps a player id to the name the game server addresses them by."""

    def resolve(self, player_id: int) -> str:
        user = db.session.get(User, player_id)
        if user is None:
            raise UnresolvedIdentityError(f"unknown player {player_id}", player_id=player_id, stage="requested")
        name = (user.minecraft_name or "").strip()
        if not name:
            raise UnresolvedIdentityError("account not linked", player_id=player_id, stage="requested")
        if not is_valid_target(name):
            raise UnresolvedIdentityError(
                f"linked name {name!r} is not a valid Minecraft name", player_id=player_id, stage="requested"
            )
        return name


__all__ = ["COMMAND_TEMPLATES", "IdentityResolver", "is_valid_target", "to_commands"]
