"""Tests for main.py -- the auth-service command line.

Covers:
- no command prints help and exits 2
- purge-tokens removes expired refresh tokens from the configured database
- an unreachable database exits 1 with a message
- invalid configuration exits 2 instead of a traceback
"""

from datetime import datetime, timedelta, timezone

import pytest

import main
from auth.models import Account
from auth.store import AccountStore
from core.config import Settings


def test_no_command_prints_help(capsys) -> None:
    assert main.main([]) == 2
    assert "purge-tokens" in capsys.readouterr().out


def test_purge_tokens(tmp_path, monkeypatch, capsys) -> None:
    db_url = f"sqlite:///{tmp_path / 'cli.db'}"
    store = AccountStore(db_url)
    account_id = store.create_account(Account(name="Ana", email="ana@example.com", password_hash="x"))
    now = datetime.now(timezone.utc)
    store.insert_refresh_token(account_id, "expired", now - timedelta(minutes=1))
    store.insert_refresh_token(account_id, "live", now + timedelta(hours=1))
    store.close()

    settings = Settings(_env_file=None, secret_key="k" * 32, database_url=db_url)
    monkeypatch.setattr(main, "get_settings", lambda: settings)

    assert main.main(["purge-tokens"]) == 0
    assert "Removed 1 expired refresh token(s)." in capsys.readouterr().out

    store = AccountStore(db_url)
    try:
        assert store.count_refresh_tokens(account_id) == 1
        assert store.find_active_refresh_token("live") is not None
    finally:
        store.close()


def test_purge_tokens_unreachable_database(tmp_path, monkeypatch, capsys) -> None:
    """A database that cannot be opened is reported, not raised."""
    db_url = f"sqlite:///{tmp_path / 'no-such-dir' / 'cli.db'}"
    settings = Settings(_env_file=None, secret_key="k" * 32, database_url=db_url)
    monkeypatch.setattr(main, "get_settings", lambda: settings)

    assert main.main(["purge-tokens"]) == 1
    assert "[!] Could not open database" in capsys.readouterr().err


def test_invalid_configuration_exits_2(monkeypatch, capsys) -> None:
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setattr(main, "get_settings", lambda: Settings(_env_file=None))

    assert main.main(["purge-tokens"]) == 2
    assert "Invalid configuration" in capsys.readouterr().err


def test_unknown_command_rejected() -> None:
    with pytest.raises(SystemExit):
        main.main(["frobnicate"])
