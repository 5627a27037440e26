"""
auth/store.py -- SQLAlchemy Core persistence layer for identities and sessions.

Pattern: Repository + Data Mapper. IdentityStore and SessionStore are the
repositories; _row_to_identity / _row_to_session are the mappers. Components
never touch SQL directly.

Both repositories share one Engine: sessions must live in the same durable
store as identities, because a serverless host may be torn down between any
two requests.

Security:
  All queries use bound parameters. No f-strings in SQL.

  email_address, login_handle and external_subject_id carry UNIQUE
  constraints. The components still look up before writing; the constraint
  turns a lost race into an IntegrityError the caller treats as "row already
  exists, look again". SQL UNIQUE treats NULLs as distinct, which is exactly
  what external_subject_id needs (many unlinked rows, one row per subject).

  Session rows are keyed by HMAC(secret, token), never by the raw token.

Schema migration notes:
  external_subject_id / provider: added via ALTER TABLE ADD COLUMN when an
  older users table lacks them, so existing databases upgrade on startup.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, inspect, select, text
from sqlalchemy.engine import Engine

from auth.models import Identity, Session

logger = logging.getLogger("mauto.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email_address", String(255), nullable=False, unique=True),
    Column("login_handle", String(255), nullable=False, unique=True),
    Column("contact_number", String(32)),
    Column("password_hash", Text),  # NULL for OAuth-only identities
    Column("external_subject_id", String(255), unique=True),  # provider's stable user ID
    Column("provider", String(50)),  # "google"
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("session_key", String(64), primary_key=True),  # HMAC-SHA256 hex of the token
    Column("identity_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("last_seen_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
    # No FK to users: a session outliving its identity must fail validation,
    # not be blocked (or cascaded) at the database level.
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def open_engine(db_url: str) -> Engine:
    """Create the shared Engine and make sure the schema is current."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    _ensure_external_identity_columns(engine)
    return engine


def _ensure_external_identity_columns(engine: Engine) -> None:
    """Add external_subject_id / provider to a users table created before OAuth.

    Idempotent: inspects the live table and only alters what is missing.
    """
    existing = {col["name"] for col in inspect(engine).get_columns("users")}
    alters = []
    if "external_subject_id" not in existing:
        alters.append("ALTER TABLE users ADD COLUMN external_subject_id VARCHAR(255)")
    if "provider" not in existing:
        alters.append("ALTER TABLE users ADD COLUMN provider VARCHAR(50)")
    if not alters:
        return
    with engine.connect() as conn:
        for stmt in alters:
            conn.execute(text(stmt))
        conn.commit()
    logger.info("users table upgraded (%d column(s) added)", len(alters))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    # Fixed precision keeps ISO strings lexicographically comparable in SQL.
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Identity repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity rows.

    Usage:
        store = IdentityStore(open_engine("sqlite:///mauto.db"))
        new_id = store.create_identity(Identity(email_address="a@x.com", login_handle="a", password_hash=h))
        identity = store.get_by_email("a@x.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def get_by_id(self, identity_id: int) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email_address == email)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_subject(self, subject_id: str) -> Identity | None:
        """Look up the identity a provider subject is linked to, if any."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.external_subject_id == subject_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def login_handle_exists(self, handle: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.login_handle == handle)).fetchone()
        return row is not None

    def find_registration_clashes(self, email: str, handle: str) -> list[Identity]:
        """Return every identity already holding this email or this login handle."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where((_users.c.email_address == email) | (_users.c.login_handle == handle))
            ).fetchall()
        return [_row_to_identity(r) for r in rows]

    def create_identity(self, identity: Identity) -> int:
        """Insert a new identity and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email, login handle or
        subject already exists. Callers treat that as a lost race and look
        the row up again.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email_address=identity.email_address,
                    login_handle=identity.login_handle,
                    contact_number=identity.contact_number,
                    password_hash=identity.password_hash,
                    external_subject_id=identity.external_subject_id,
                    provider=identity.provider,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def link_external(self, identity_id: int, provider: str, subject_id: str) -> bool:
        """Attach a provider subject to an identity that has none yet.

        The WHERE clause only matches while external_subject_id is NULL, so a
        subject can be added but never overwritten. Returns False when the row
        is gone or was linked by a concurrent request first.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == identity_id) & (_users.c.external_subject_id.is_(None)))
                .values(provider=provider, external_subject_id=subject_id)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_identity(self, identity_id: int) -> bool:
        """Permanently delete an identity. Returns True if a row was removed.

        Sessions that reference it are left in place; SessionManager rejects
        and removes them on their next validation.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == identity_id))
            conn.commit()
        return result.rowcount > 0

    def count(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Session repository
# ---------------------------------------------------------------------------


@dataclass
class SessionRecord:
    """A stored session row. session_key is the digest, not the client token."""

    session_key: str
    identity_id: int
    created_at: datetime
    last_seen_at: datetime
    expires_at: datetime


class SessionStore:
    """Repository for session rows. Owned exclusively by SessionManager."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def insert(self, session_key: str, session: Session) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    session_key=session_key,
                    identity_id=session.identity_id,
                    created_at=to_iso(session.created_at),
                    last_seen_at=to_iso(session.last_seen_at),
                    expires_at=to_iso(session.expires_at),
                )
            )
            conn.commit()

    def get(self, session_key: str) -> SessionRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.session_key == session_key)).fetchone()
        return _row_to_session(row) if row is not None else None

    def touch(self, session_key: str, last_seen_at: datetime, expires_at: datetime) -> None:
        """Advance a session's rolling expiry."""
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.update()
                .where(_sessions.c.session_key == session_key)
                .values(last_seen_at=to_iso(last_seen_at), expires_at=to_iso(expires_at))
            )
            conn.commit()

    def delete(self, session_key: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.session_key == session_key))
            conn.commit()
        return result.rowcount > 0

    def count_for_identity(self, identity_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                text("SELECT COUNT(*) FROM sessions WHERE identity_id = :identity_id"),
                {"identity_id": identity_id},
            ).scalar()
        return result or 0

    def purge_expired(self, now: datetime) -> int:
        """Delete every session whose expiry is before now. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < to_iso(now)))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email_address=row.email_address,
        login_handle=row.login_handle,
        contact_number=row.contact_number,
        password_hash=row.password_hash,
        external_subject_id=row.external_subject_id,
        provider=row.provider,
        created_at=row.created_at,
    )


def _row_to_session(row) -> SessionRecord:
    return SessionRecord(
        session_key=row.session_key,
        identity_id=row.identity_id,
        created_at=datetime.fromisoformat(row.created_at),
        last_seen_at=datetime.fromisoformat(row.last_seen_at),
        expires_at=datetime.fromisoformat(row.expires_at),
    )
