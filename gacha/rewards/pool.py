"""Reward pool definition, parsing and validation.

A pool is an ordered list of rewards whose weights are percentages summing to
exactly 100. Declaration order matters: the selector walks entries in this
order, so reordering a pool changes which draw values map to which reward
(but not the odds).

Accepted entry keys (JSON file or Python dicts):
  id, name, rarity, effectType | effect_type, effectValue | effect_value, weight
"""

from __future__ import annotations

import enum
import json
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from gacha.errors import ConfigError

WEIGHT_TOTAL = 100.0
WEIGHT_EPSILON = 1e-6

# Values interpolated into game commands: no whitespace or shell/command metacharacters
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_:.\-]+$")


class Rarity(str, enum.Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class EffectType(str, enum.Enum):
    CURRENCY = "currency"
    ITEM = "item"
    RANK = "rank"
    EXPERIENCE = "experience"
    CRATE = "crate"


# Effect types whose value is an amount rather than an identifier
NUMERIC_EFFECTS = frozenset({EffectType.CURRENCY, EffectType.EXPERIENCE})


@dataclass(frozen=True)
class RewardDefinition:
    id: str
    name: str
    rarity: Rarity
    effect_type: EffectType
    effect_value: Union[int, str]
    weight: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rarity": self.rarity.value,
            "effectType": self.effect_type.value,
            "effectValue": self.effect_value,
            "weight": self.weight,
        }


@dataclass(frozen=True)
class RewardPool:
    """Validated, immutable pool. Safe to share between request threads."""

    rewards: Tuple[RewardDefinition, ...]

    def __iter__(self) -> Iterator[RewardDefinition]:
        return iter(self.rewards)

    def __len__(self) -> int:
        return len(self.rewards)

    def __getitem__(self, index: int) -> RewardDefinition:
        return self.rewards[index]

    def get(self, reward_id: str) -> Optional[RewardDefinition]:
        for reward in self.rewards:
            if reward.id == reward_id:
                return reward
        return None

    @property
    def total_weight(self) -> float:
        return math.fsum(r.weight for r in self.rewards)


# Bundled pool used when GACHA_POOL_PATH is not set.
DEFAULT_POOL: Tuple[Dict[str, Any], ...] = (
    # COMMON (70% total)
    {"id": "xp_small", "name": "100 XP", "rarity": "common", "effectType": "experience", "effectValue": 100, "weight": 35},
    {"id": "coins_small", "name": "50 KilluCoins", "rarity": "common", "effectType": "currency", "effectValue": 50, "weight": 35},
    # RARE (20% total)
    {"id": "coins_med", "name": "500 KilluCoins", "rarity": "rare", "effectType": "currency", "effectValue": 500, "weight": 10},
    {"id": "item_diamond", "name": "Diamond", "rarity": "rare", "effectType": "item", "effectValue": "diamond", "weight": 10},
    # EPIC (8% total)
    {"id": "rank_vip_3d", "name": "VIP Rank (3 days)", "rarity": "epic", "effectType": "rank", "effectValue": "vip_3d", "weight": 4},
    {"id": "coins_large", "name": "2000 KilluCoins", "rarity": "epic", "effectType": "currency", "effectValue": 2000, "weight": 3},
    {"id": "item_gold_apple", "name": "Golden Apple", "rarity": "epic", "effectType": "item", "effectValue": "golden_apple", "weight": 1},
    # LEGENDARY (2% total)
    {"id": "rank_mvp_1d", "name": "MVP Rank (1 day)", "rarity": "legendary", "effectType": "rank", "effectValue": "mvp_1d", "weight": 1},
    {"id": "item_netherite", "name": "Netherite Ingot", "rarity": "legendary", "effectType": "item", "effectValue": "netherite_ingot", "weight": 0.8},
    {"id": "crate_premium", "name": "Premium Crate Key", "rarity": "legendary", "effectType": "crate", "effectValue": "premium_key", "weight": 0.2},
)


def _field(entry: Dict[str, Any], *names: str):
    for name in names:
        if name in entry:
            return entry[name]
    return None


def _parse_weight(raw, where: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ConfigError(f"{where}: weight must be a number, got {raw!r}")
    weight = float(raw)
    if not math.isfinite(weight) or weight < 0:
        raise ConfigError(f"{where}: weight must be finite and non-negative, got {raw!r}")
    return weight


def _parse_effect_value(effect_type: EffectType, raw, where: str) -> Union[int, str]:
    if effect_type in NUMERIC_EFFECTS:
        if isinstance(raw, bool):
            raise ConfigError(f"{where}: {effect_type.value} amount must be an integer")
        if isinstance(raw, float) and raw.is_integer():
            raw = int(raw)
        if isinstance(raw, str) and raw.strip().isdigit():
            raw = int(raw.strip())
        if not isinstance(raw, int) or raw <= 0:
            raise ConfigError(f"{where}: {effect_type.value} amount must be a positive integer, got {raw!r}")
        return raw
    if not isinstance(raw, str) or not _TOKEN_RE.fullmatch(raw):
        raise ConfigError(f"{where}: {effect_type.value} value must be a single identifier token, got {raw!r}")
    return raw


def _parse_entry(entry: Any, index: int) -> RewardDefinition:
    where = f"reward #{index}"
    if not isinstance(entry, dict):
        raise ConfigError(f"{where}: expected an object, got {type(entry).__name__}")
    reward_id = _field(entry, "id")
    if not isinstance(reward_id, str) or not reward_id.strip():
        raise ConfigError(f"{where}: id is required")
    reward_id = reward_id.strip()
    where = f"reward {reward_id!r}"
    name = _field(entry, "name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"{where}: name is required")
    try:
        rarity = Rarity(str(_field(entry, "rarity")).lower())
    except ValueError:
        raise ConfigError(f"{where}: unknown rarity {_field(entry, 'rarity')!r}")
    raw_type = _field(entry, "effectType", "effect_type")
    try:
        effect_type = EffectType(str(raw_type).lower())
    except ValueError:
        raise ConfigError(f"{where}: unknown effect type {raw_type!r}")
    effect_value = _parse_effect_value(effect_type, _field(entry, "effectValue", "effect_value"), where)
    weight = _parse_weight(_field(entry, "weight"), where)
    return RewardDefinition(
        id=reward_id,
        name=name.strip(),
        rarity=rarity,
        effect_type=effect_type,
        effect_value=effect_value,
        weight=weight,
    )


def load_pool(entries: Iterable[Any]) -> RewardPool:
    """Parse and validate pool entries into a RewardPool.

    Raises ConfigError when the pool is empty, ids repeat, an entry is
    malformed, or weights do not sum to 100 within WEIGHT_EPSILON. Weights are
    never renormalised.
    """
    if entries is None:
        raise ConfigError("reward pool is missing")
    rewards: List[RewardDefinition] = [_parse_entry(e, i) for i, e in enumerate(entries)]
    if not rewards:
        raise ConfigError("reward pool is empty")
    seen = set()
    for reward in rewards:
        if reward.id in seen:
            raise ConfigError(f"duplicate reward id {reward.id!r}")
        seen.add(reward.id)
    pool = RewardPool(tuple(rewards))
    total = pool.total_weight
    if abs(total - WEIGHT_TOTAL) > WEIGHT_EPSILON:
        raise ConfigError(f"reward weights sum to {total!r}, expected {WEIGHT_TOTAL}")
    return pool


def load_pool_file(path: Union[str, Path]) -> RewardPool:
    """Load a pool from a JSON file holding a list of reward objects."""
    p = Path(path)
    try:
        raw = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read reward pool {p}: {exc}")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"reward pool {p} is not valid JSON: {exc}")
    if isinstance(data, dict) and "rewards" in data:
        data = data["rewards"]
    if not isinstance(data, list):
        raise ConfigError(f"reward pool {p} must be a JSON list of rewards")
    return load_pool(data)


__all__ = [
    "DEFAULT_POOL",
    "EffectType",
    "Rarity",
    "RewardDefinition",
    "RewardPool",
    "load_pool",
    "load_pool_file",
]
