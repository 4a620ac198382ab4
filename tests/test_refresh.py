"""Unit tests for auth/refresh.py -- RefreshTokenStore lifecycle.

Covers:
- issue() returns distinct opaque tokens that resolve to their account
- resolve() rejects unknown and expired tokens
- rotate() consumes the old token exactly once
- concurrent rotate() of one token: exactly one winner, loser's token revoked
- rotate() still succeeds when deleting the old row fails
- a lost rotation raises InvalidRefreshToken even if its cleanup fails
- revoke() is idempotent
- purge_expired() removes only dead rows
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import InvalidRefreshToken, StorageError
from auth.models import Account, RefreshTokenRecord
from auth.refresh import RefreshTokenStore, generate_refresh_token
from auth.store import AccountStore


@pytest.fixture
def account_id(store: AccountStore) -> int:
    return store.create_account(Account(name="Ana", email="ana@example.com", password_hash="x"))


class _Clock:
    """Settable clock for driving expiry without sleeping."""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Issue / resolve
# ---------------------------------------------------------------------------


def test_generated_tokens_are_opaque_and_unique() -> None:
    tokens = {generate_refresh_token() for _ in range(50)}
    assert len(tokens) == 50
    assert all(len(t) == 64 for t in tokens)
    assert all("." not in t for t in tokens)


def test_issue_then_resolve(refresh_tokens: RefreshTokenStore, account_id: int) -> None:
    token = refresh_tokens.issue(account_id)
    assert refresh_tokens.resolve(token) == account_id


def test_issue_twice_gives_two_live_tokens(
    refresh_tokens: RefreshTokenStore, store: AccountStore, account_id: int
) -> None:
    first = refresh_tokens.issue(account_id)
    second = refresh_tokens.issue(account_id)
    assert first != second
    assert refresh_tokens.resolve(first) == account_id
    assert refresh_tokens.resolve(second) == account_id
    assert store.count_refresh_tokens(account_id) == 2


def test_resolve_unknown(refresh_tokens: RefreshTokenStore) -> None:
    with pytest.raises(InvalidRefreshToken):
        refresh_tokens.resolve("never-issued")


def test_resolve_expired(store: AccountStore, account_id: int) -> None:
    clock = _Clock()
    tokens = RefreshTokenStore(store, ttl_seconds=60, clock=clock)
    token = tokens.issue(account_id)
    clock.advance(seconds=59)
    assert tokens.resolve(token) == account_id
    clock.advance(seconds=1)
    with pytest.raises(InvalidRefreshToken):
        tokens.resolve(token)


def test_issue_storage_failure_is_storage_error() -> None:
    broken = MagicMock(spec=AccountStore)
    broken.insert_refresh_token.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
    with pytest.raises(StorageError):
        RefreshTokenStore(broken).issue(1)


# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------


def test_rotate_consumes_old_token(
    refresh_tokens: RefreshTokenStore, store: AccountStore, account_id: int
) -> None:
    old = refresh_tokens.issue(account_id)
    rotated_id, new = refresh_tokens.rotate(old)
    assert rotated_id == account_id
    assert new != old
    assert refresh_tokens.resolve(new) == account_id
    with pytest.raises(InvalidRefreshToken):
        refresh_tokens.resolve(old)
    with pytest.raises(InvalidRefreshToken):
        refresh_tokens.rotate(old)
    assert store.count_refresh_tokens(account_id) == 1


def test_rotate_expired_token_rejected(store: AccountStore, account_id: int) -> None:
    clock = _Clock()
    tokens = RefreshTokenStore(store, ttl_seconds=60, clock=clock)
    token = tokens.issue(account_id)
    clock.advance(minutes=5)
    with pytest.raises(InvalidRefreshToken):
        tokens.rotate(token)
    # Nothing new was issued for a dead token.
    assert store.count_refresh_tokens(account_id) == 1


def test_concurrent_rotation_has_single_winner(tmp_path) -> None:
    """Two threads rotating one token: one gets a pair, the other InvalidRefreshToken.

    Uses a file database so both threads really hit SQLite through separate
    connections.
    """
    store = AccountStore(f"sqlite:///{tmp_path / 'rotation.db'}")
    try:
        account_id = store.create_account(Account(name="Ana", email="ana@example.com", password_hash="x"))
        tokens = RefreshTokenStore(store)
        token = tokens.issue(account_id)

        barrier = threading.Barrier(2)
        winners: list[tuple[int, str]] = []
        losers: list[InvalidRefreshToken] = []
        lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            try:
                result = tokens.rotate(token)
            except InvalidRefreshToken as exc:
                with lock:
                    losers.append(exc)
            else:
                with lock:
                    winners.append(result)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert len(winners) == 1
        assert len(losers) == 1
        _, survivor = winners[0]
        assert tokens.resolve(survivor) == account_id
        # The loser's freshly issued token was revoked; only the winner's remains.
        assert store.count_refresh_tokens(account_id) == 1
    finally:
        store.close()


def test_rotate_succeeds_when_old_row_delete_fails(caplog) -> None:
    """A storage error deleting the old token is logged, not raised."""
    store = MagicMock(spec=AccountStore)
    store.find_active_refresh_token.return_value = RefreshTokenRecord(
        token="old", account_id=9, expires_at=datetime.now(timezone.utc) + timedelta(hours=1)
    )
    store.delete_refresh_token.side_effect = OperationalError("DELETE", {}, Exception("disk I/O error"))

    with caplog.at_level(logging.ERROR, logger="authservice.auth.refresh"):
        account_id, new = RefreshTokenStore(store).rotate("old")

    assert account_id == 9
    assert new and new != "old"
    store.insert_refresh_token.assert_called_once()
    assert any(r.levelno == logging.ERROR for r in caplog.records)


def test_lost_rotation_stays_invalid_when_cleanup_fails(caplog) -> None:
    """Losing a rotation race is reported as InvalidRefreshToken even if the
    cleanup of the loser's new token hits a storage error."""
    store = MagicMock(spec=AccountStore)
    store.find_active_refresh_token.return_value = RefreshTokenRecord(
        token="old", account_id=9, expires_at=datetime.now(timezone.utc) + timedelta(hours=1)
    )
    # First delete (the old token) finds nothing; the second (cleanup) fails.
    store.delete_refresh_token.side_effect = [False, OperationalError("DELETE", {}, Exception("disk I/O error"))]

    with caplog.at_level(logging.ERROR, logger="authservice.auth.refresh"):
        with pytest.raises(InvalidRefreshToken):
            RefreshTokenStore(store).rotate("old")

    assert store.delete_refresh_token.call_count == 2
    assert any(r.levelno == logging.ERROR for r in caplog.records)


# ---------------------------------------------------------------------------
# Revoke / purge
# ---------------------------------------------------------------------------


def test_revoke_is_idempotent(refresh_tokens: RefreshTokenStore, account_id: int) -> None:
    token = refresh_tokens.issue(account_id)
    refresh_tokens.revoke(token)
    refresh_tokens.revoke(token)
    refresh_tokens.revoke("never-issued")
    with pytest.raises(InvalidRefreshToken):
        refresh_tokens.resolve(token)


def test_purge_removes_only_expired(store: AccountStore, account_id: int) -> None:
    clock = _Clock()
    short = RefreshTokenStore(store, ttl_seconds=60, clock=clock)
    long = RefreshTokenStore(store, ttl_seconds=3600, clock=clock)
    short.issue(account_id)
    short.issue(account_id)
    keeper = long.issue(account_id)

    clock.advance(minutes=2)
    assert short.purge_expired() == 2
    assert short.purge_expired() == 0
    assert long.resolve(keeper) == account_id
    assert store.count_refresh_tokens(account_id) == 1
