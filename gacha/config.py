import os
from dataclasses import dataclass
from typing import Optional

from gacha.errors import ConfigError


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class GachaConfig:
    cooldown_hours: float = 24.0
    pool_path: Optional[str] = None
    history_default_limit: int = 20
    history_max_limit: int = 100
    retry_attempts: int = 3
    retry_base_ms: int = 50
    retry_max_ms: int = 1000
    retry_jitter_ms: int = 25

    @classmethod
    def from_env(cls) -> "GachaConfig":
        """Read roll tunables from GACHA_* environment variables."""
        return cls(
            cooldown_hours=_env_float("GACHA_COOLDOWN_HOURS", cls.cooldown_hours),
            pool_path=os.getenv("GACHA_POOL_PATH") or None,
            history_default_limit=_env_int("GACHA_HISTORY_LIMIT", cls.history_default_limit),
            history_max_limit=_env_int("GACHA_HISTORY_MAX_LIMIT", cls.history_max_limit),
            retry_attempts=_env_int("GACHA_RETRY_ATTEMPTS", cls.retry_attempts),
            retry_base_ms=_env_int("GACHA_RETRY_BASE_MS", cls.retry_base_ms),
            retry_max_ms=_env_int("GACHA_RETRY_MAX_MS", cls.retry_max_ms),
            retry_jitter_ms=_env_int("GACHA_RETRY_JITTER_MS", cls.retry_jitter_ms),
        )


__all__ = ["GachaConfig"]
