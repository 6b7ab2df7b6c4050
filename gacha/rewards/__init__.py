from .pool import (  # noqa: F401 re-export
    DEFAULT_POOL,
    EffectType,
    Rarity,
    RewardDefinition,
    RewardPool,
    load_pool,
    load_pool_file,
)
from .selector import draw_from, select  # noqa: F401 re-export
