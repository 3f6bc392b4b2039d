# ============================================================================
# mboxscope -- Command Line Tests (tests/test_cli.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Runs `mboxscope index` / `mboxscope report` through cli.main() and
#   checks exit codes and messages. The report server is never actually
#   started: uvicorn.run is replaced with a recorder.
#
# INTERNET ACCESS: NONE
# ============================================================================

import os

import pytest

from mboxscope.cli import main
from mboxscope.core.index_store import IndexStore

# Import shared helpers from conftest.py in the same directory.
import sys as _sys, os as _os
_sys.path.insert(0, _os.path.dirname(__file__))
from conftest import build_mbox, reference_messages


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    for name in ("MBOXSCOPE_MBOX", "MBOXSCOPE_DB", "MBOXSCOPE_PORT", "MBOXSCOPE_COMMIT_EVERY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MBOXSCOPE_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def uvicorn_calls(monkeypatch):
    calls = []
    monkeypatch.setattr("uvicorn.run", lambda app, **kwargs: calls.append(kwargs))
    return calls


class TestIndexCommand:
    def test_index_success(self, tmp_path, write_mbox, capsys):
        mbox = write_mbox(build_mbox(reference_messages()))
        db_path = str(tmp_path / "out" / "mail.sqlite3")
        code = main(["--config-dir", str(tmp_path), "index", mbox, db_path])
        assert code == 0
        out = capsys.readouterr().out
        assert "Messages indexed:  3" in out
        assert "mboxscope report" in out
        with IndexStore.open_readonly(db_path) as store:
            assert store.counts()["messages"] == 3

    def test_missing_mbox(self, tmp_path, capsys):
        db_path = tmp_path / "mail.sqlite3"
        code = main(["--config-dir", str(tmp_path), "index", str(tmp_path / "nope.mbox"), str(db_path)])
        assert code == 1
        err = capsys.readouterr().err
        assert "IO-001" in err
        assert "Fix:" in err
        assert not db_path.exists()

    def test_paths_from_environment(self, tmp_path, write_mbox, monkeypatch):
        mbox = write_mbox(build_mbox(reference_messages()))
        db_path = str(tmp_path / "env.sqlite3")
        monkeypatch.setenv("MBOXSCOPE_MBOX", mbox)
        monkeypatch.setenv("MBOXSCOPE_DB", db_path)
        assert main(["--config-dir", str(tmp_path), "index"]) == 0
        assert os.path.isfile(db_path)

    def test_invalid_config(self, tmp_path, write_mbox, capsys):
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "default_config.yaml").write_text("ingest:\n  commit_every: 0\n")
        mbox = write_mbox(build_mbox(reference_messages()))
        code = main(["--config-dir", str(tmp_path), "index", mbox, str(tmp_path / "m.sqlite3")])
        assert code == 1
        assert "CONF-001" in capsys.readouterr().err

    def test_non_numeric_env_is_config_error(self, tmp_path, write_mbox, monkeypatch, capsys):
        monkeypatch.setenv("MBOXSCOPE_COMMIT_EVERY", "many")
        mbox = write_mbox(build_mbox(reference_messages()))
        db_path = tmp_path / "m.sqlite3"
        code = main(["--config-dir", str(tmp_path), "index", mbox, str(db_path)])
        assert code == 1
        err = capsys.readouterr().err
        assert "CONF-001" in err
        assert "MBOXSCOPE_COMMIT_EVERY" in err
        assert "Fix:" in err
        assert not db_path.exists()

    def test_no_command(self, capsys):
        assert main([]) == 1


class TestReportCommand:
    def test_report_uses_config_defaults(self, tmp_path, reference_index, uvicorn_calls, capsys):
        code = main(["--config-dir", str(tmp_path), "report", reference_index])
        assert code == 0
        assert uvicorn_calls == [{"host": "127.0.0.1", "port": 31200, "log_level": "warning"}]
        assert "http://127.0.0.1:31200/" in capsys.readouterr().out

    def test_report_port_override(self, tmp_path, reference_index, uvicorn_calls):
        main(["--config-dir", str(tmp_path), "report", reference_index, "--port", "9001"])
        assert uvicorn_calls[0]["port"] == 9001

    def test_report_missing_index(self, tmp_path, uvicorn_calls, capsys):
        code = main(["--config-dir", str(tmp_path), "report", str(tmp_path / "missing.sqlite3")])
        assert code == 1
        assert "IDX-001" in capsys.readouterr().err
        assert uvicorn_calls == []
