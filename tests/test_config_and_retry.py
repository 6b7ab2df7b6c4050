import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from gacha.config import GachaConfig
from gacha.errors import ConfigError
from gacha.services.retry import RetryPolicy


def test_config_defaults(monkeypatch):
    for name in ("GACHA_COOLDOWN_HOURS", "GACHA_POOL_PATH", "GACHA_HISTORY_LIMIT", "GACHA_RETRY_ATTEMPTS"):
        monkeypatch.delenv(name, raising=False)
    cfg = GachaConfig.from_env()
    assert cfg.cooldown_hours == 24.0
    assert cfg.pool_path is None
    assert cfg.history_default_limit == 20
    assert cfg.history_max_limit == 100
    assert cfg.retry_attempts == 3


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("GACHA_COOLDOWN_HOURS", "12.5")
    monkeypatch.setenv("GACHA_HISTORY_LIMIT", "5")
    monkeypatch.setenv("GACHA_RETRY_ATTEMPTS", "")
    cfg = GachaConfig.from_env()
    assert cfg.cooldown_hours == 12.5
    assert cfg.history_default_limit == 5
    assert cfg.retry_attempts == 3


def test_config_rejects_garbage(monkeypatch):
    monkeypatch.setenv("GACHA_RETRY_ATTEMPTS", "three")
    with pytest.raises(ConfigError, match="GACHA_RETRY_ATTEMPTS"):
        GachaConfig.from_env()


def test_cooldown_hours_drive_the_window(tmp_path, monkeypatch):
    from datetime import timedelta

    from gacha import create_app

    monkeypatch.setenv("GACHA_COOLDOWN_HOURS", "1")
    app = create_app({"SQLALCHEMY_DATABASE_URI": f"sqlite:///{(tmp_path / 'w.db').as_posix()}"})
    assert app.extensions["gacha"].guard.window == timedelta(hours=1)


def test_backoff_is_exponential_and_capped():
    policy = RetryPolicy(base_ms=50, max_ms=300, jitter_ms=0)
    assert [policy.backoff_seconds(n) for n in (1, 2, 3, 4, 5)] == [0.05, 0.1, 0.2, 0.3, 0.3]


def test_backoff_jitter_bounded():
    policy = RetryPolicy(base_ms=10, max_ms=100, jitter_ms=5)
    for _ in range(50):
        assert 0.010 <= policy.backoff_seconds(1) <= 0.015


def test_run_gives_up_after_max_attempts():
    sleeps, calls, rollbacks = [], [], []
    policy = RetryPolicy(max_attempts=3, base_ms=1, max_ms=10, jitter_ms=0, sleep=sleeps.append)

    def op():
        calls.append(1)
        raise OperationalError("SELECT", {}, Exception("locked"))

    with pytest.raises(OperationalError):
        policy.run(op, name="test.op", on_error=lambda: rollbacks.append(1))
    assert len(calls) == 3
    assert len(rollbacks) == 3
    assert sleeps == [0.001, 0.002]


def test_run_does_not_retry_integrity_errors():
    calls = []
    policy = RetryPolicy(sleep=lambda s: None)

    def op():
        calls.append(1)
        raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    with pytest.raises(IntegrityError):
        policy.run(op, name="test.op")
    assert calls == [1]


def test_from_config_never_below_one_attempt():
    cfg = GachaConfig(retry_attempts=0)
    assert RetryPolicy.from_config(cfg).max_attempts == 1
