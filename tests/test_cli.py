import importlib
import json
import sys

import pytest

# Import run.py as a module and exercise parse_args + main with a patched
# start_server so no networking starts.


@pytest.fixture()
def run_module(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{(tmp_path / 'cli.db').as_posix()}")
    monkeypatch.delenv("GACHA_POOL_PATH", raising=False)
    if "run" in sys.modules:
        del sys.modules["run"]
    return importlib.import_module("run")


@pytest.fixture()
def fake_server(monkeypatch):
    calls = {}

    def fake_start_server(host, port, debug, app=None):
        calls.update(host=host, port=port, debug=debug, app=app)

    import gacha.server as server_mod

    monkeypatch.setattr(server_mod, "start_server", fake_start_server)
    return calls


def test_version_flag_outputs_version(run_module, capsys):
    with pytest.raises(SystemExit) as exc:
        run_module.parse_args(["--version"])
    assert exc.value.code == 0
    out = capsys.readouterr().out
    assert run_module.__version__ in out
    assert "CrystalTides Gacha" in out


def test_default_command_is_server(run_module):
    assert run_module.parse_args([]).command == "server"


def test_server_main_invokes_start_server(monkeypatch, run_module, fake_server):
    monkeypatch.setenv("PORT", "5555")
    monkeypatch.setenv("HOST", "127.0.0.1")
    assert run_module.main(["server"]) == 0
    assert fake_server["host"] == "127.0.0.1"
    assert fake_server["port"] == 5555
    assert fake_server["debug"] is False
    assert fake_server["app"] is not None


def test_server_flags_override_env(monkeypatch, run_module, fake_server):
    monkeypatch.setenv("PORT", "5555")
    run_module.main(["server", "--port", "6001", "--debug"])
    assert fake_server["port"] == 6001
    assert fake_server["debug"] is True


def test_check_pool_default(run_module, capsys):
    assert run_module.main(["check-pool"]) == 0
    out = capsys.readouterr().out
    assert "xp_small" in out
    assert "[OK] 10 rewards, total weight 100" in out


def test_check_pool_rejects_bad_file(run_module, tmp_path, capsys):
    bad = tmp_path / "pool.json"
    bad.write_text(json.dumps([{"id": "a", "name": "A", "rarity": "common", "effectType": "currency",
                                "effectValue": 5, "weight": 90}]), encoding="utf-8")
    assert run_module.main(["check-pool", "--path", str(bad)]) == 1
    assert "Invalid reward pool" in capsys.readouterr().out


def test_operator_commands(run_module, capsys):
    assert run_module.main(["make-admin", "opsadmin"]) == 0
    assert "Created new admin user 'opsadmin'" in capsys.readouterr().out

    assert run_module.main(["link-account", "opsadmin", "bad name"]) == 1
    assert run_module.main(["link-account", "nobody", "Nobody"]) == 1
    assert run_module.main(["link-account", "opsadmin", "Ops_Admin"]) == 0
    assert "Ops_Admin" in capsys.readouterr().out

    assert run_module.main(["queue-list"]) == 0
    assert run_module.main(["reconcile"]) == 0
    assert "Requeued 0 rolls; skipped 0." in capsys.readouterr().out

    assert run_module.main(["queue-mark", "77", "delivered"]) == 1
    assert "not found" in capsys.readouterr().out
