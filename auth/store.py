"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AccountStore is the repository for both
accounts and refresh tokens; _row_to_account / _row_to_refresh_token are the
mappers. Services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Integrity:
  accounts.email carries a UNIQUE index. create_account() and update_account()
  let sqlalchemy.exc.IntegrityError propagate so the caller can tell a lost
  race on the email index apart from any other storage failure.

  accounts uses SQLite AUTOINCREMENT (sqlite_autoincrement=True), so an id
  freed by a delete is never handed out again.

  refresh_tokens.account_id is a foreign key with ON DELETE CASCADE.
  SQLite only honours it with PRAGMA foreign_keys=ON (set per connection
  below); delete_account() also removes the tokens explicitly inside the same
  transaction so other backends behave identically.

Timestamps are DateTime columns written in UTC. SQLite stores them as naive
ISO strings, so the mappers re-attach timezone.utc on the way out.

DB path: auth/auth_service.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import Account, RefreshTokenRecord

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'auth_service.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    sqlite_autoincrement=True,
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("token", String(128), primary_key=True),
    Column(
        "account_id",
        Integer,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("expires_at", DateTime(timezone=True), nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account and RefreshTokenRecord entities.

    Usage:
        store = AccountStore()
        account_id = store.create_account(Account(name="Ana", email="ana@x.io", password_hash=h))
        account = store.get_by_email("ana@x.io")
        store.close()

    Emails are compared exactly as given; normalization is the caller's job
    (AuthService lower-cases before every lookup and write).
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        created_at/updated_at are taken from the dataclass when set, else now.
        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = _now()
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    name=account.name,
                    email=account.email,
                    password_hash=account.password_hash,
                    created_at=account.created_at or now,
                    updated_at=account.updated_at or now,
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_account(self, account_id: int, name: str, email: str) -> Account | None:
        """Set name and email, stamp updated_at, and return the fresh row.

        Returns None if account_id does not exist.
        Raises sqlalchemy.exc.IntegrityError if email belongs to another account.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(name=name, email=email, updated_at=_now())
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row)

    def delete_account(self, account_id: int) -> bool:
        """Permanently delete an account and every refresh token it owns.

        Both deletes run in one transaction. Returns True if the account row
        was deleted, False if it did not exist.
        """
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.account_id == account_id))
            result = conn.execute(_accounts.delete().where(_accounts.c.id == account_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh token queries
    # ------------------------------------------------------------------

    def insert_refresh_token(self, account_id: int, token: str, expires_at: datetime) -> None:
        """Persist a refresh token row. created_at is stamped now."""
        with self.engine.begin() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    token=token,
                    account_id=account_id,
                    expires_at=expires_at,
                    created_at=_now(),
                )
            )

    def find_active_refresh_token(self, token: str, now: datetime | None = None) -> RefreshTokenRecord | None:
        """Return the row for token if it exists and expires after now.

        An expired row is reported exactly like a missing one.
        """
        now = now or _now()
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token == token) & (_refresh_tokens.c.expires_at > now)
                )
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete_refresh_token(self, token: str) -> bool:
        """Delete one refresh token. Returns True only if this call removed the row.

        The rowcount is what makes rotation single-use: when two callers race
        to delete the same token, the database lets exactly one of them see 1.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
        return result.rowcount > 0

    def delete_expired_refresh_tokens(self, now: datetime | None = None) -> int:
        """Remove rows whose expires_at is at or before now. Returns the count removed."""
        now = now or _now()
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= now))
        return result.rowcount

    def count_refresh_tokens(self, account_id: int) -> int:
        """Return how many refresh token rows (live or expired) account_id owns."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_refresh_tokens).where(_refresh_tokens.c.account_id == account_id)
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _row_to_refresh_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        token=row.token,
        account_id=row.account_id,
        expires_at=_as_utc(row.expires_at),
        created_at=_as_utc(row.created_at),
    )
