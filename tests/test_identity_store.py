"""
tests/test_identity_store.py -- Unit tests for IdentityStore, SessionStore and open_engine.

Covers:
  - Identity create / lookup by id, email (exact) and subject
  - UNIQUE constraints on email, login handle and subject
  - link_external attaches a subject once and never overwrites it
  - Registration clash lookup, delete, count
  - Legacy users table gains the external identity columns on startup
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError

from auth.models import Identity, Session
from auth.store import IdentityStore, SessionStore, open_engine
from conftest import memory_url


def _identity(email: str = "a@x.com", handle: str = "alice", **kwargs) -> Identity:
    return Identity(email_address=email, login_handle=handle, **kwargs)


class TestIdentityLookup:
    def test_create_then_lookup_by_id_and_email(self, identity_store: IdentityStore) -> None:
        new_id = identity_store.create_identity(_identity(contact_number="555-0100", password_hash="h"))
        by_id = identity_store.get_by_id(new_id)
        by_email = identity_store.get_by_email("a@x.com")
        assert by_id is not None
        assert by_id == by_email
        assert by_id.login_handle == "alice"
        assert by_id.contact_number == "555-0100"
        assert by_id.created_at is not None

    def test_email_lookup_is_case_sensitive(self, identity_store: IdentityStore) -> None:
        identity_store.create_identity(_identity())
        assert identity_store.get_by_email("A@x.com") is None

    def test_lookup_by_subject(self, identity_store: IdentityStore) -> None:
        new_id = identity_store.create_identity(_identity(external_subject_id="g-1", provider="google"))
        found = identity_store.get_by_subject("g-1")
        assert found is not None
        assert found.id == new_id
        assert found.provider == "google"
        assert identity_store.get_by_subject("g-2") is None

    def test_missing_rows_return_none(self, identity_store: IdentityStore) -> None:
        assert identity_store.get_by_id(999) is None
        assert identity_store.get_by_email("nobody@x.com") is None


class TestUniqueness:
    def test_duplicate_email_rejected(self, identity_store: IdentityStore) -> None:
        identity_store.create_identity(_identity())
        with pytest.raises(IntegrityError):
            identity_store.create_identity(_identity(handle="other"))

    def test_duplicate_login_handle_rejected(self, identity_store: IdentityStore) -> None:
        identity_store.create_identity(_identity())
        with pytest.raises(IntegrityError):
            identity_store.create_identity(_identity(email="b@x.com"))

    def test_duplicate_subject_rejected(self, identity_store: IdentityStore) -> None:
        identity_store.create_identity(_identity(external_subject_id="g-1"))
        with pytest.raises(IntegrityError):
            identity_store.create_identity(_identity(email="b@x.com", handle="bob", external_subject_id="g-1"))

    def test_many_unlinked_identities_allowed(self, identity_store: IdentityStore) -> None:
        identity_store.create_identity(_identity())
        identity_store.create_identity(_identity(email="b@x.com", handle="bob"))
        assert identity_store.count() == 2


class TestLinkExternal:
    def test_link_sets_subject_and_provider(self, identity_store: IdentityStore) -> None:
        new_id = identity_store.create_identity(_identity(password_hash="h"))
        assert identity_store.link_external(new_id, "google", "g-1") is True
        linked = identity_store.get_by_id(new_id)
        assert linked.external_subject_id == "g-1"
        assert linked.provider == "google"
        assert linked.password_hash == "h"

    def test_link_never_overwrites(self, identity_store: IdentityStore) -> None:
        new_id = identity_store.create_identity(_identity())
        identity_store.link_external(new_id, "google", "g-1")
        assert identity_store.link_external(new_id, "google", "g-2") is False
        assert identity_store.get_by_id(new_id).external_subject_id == "g-1"

    def test_link_missing_identity_returns_false(self, identity_store: IdentityStore) -> None:
        assert identity_store.link_external(42, "google", "g-1") is False

    def test_link_subject_already_used_elsewhere_raises(self, identity_store: IdentityStore) -> None:
        identity_store.create_identity(_identity(external_subject_id="g-1"))
        other = identity_store.create_identity(_identity(email="b@x.com", handle="bob"))
        with pytest.raises(IntegrityError):
            identity_store.link_external(other, "google", "g-1")


class TestMaintenance:
    def test_registration_clashes(self, identity_store: IdentityStore) -> None:
        identity_store.create_identity(_identity())
        identity_store.create_identity(_identity(email="b@x.com", handle="bob"))
        clashes = identity_store.find_registration_clashes("a@x.com", "bob")
        assert {c.login_handle for c in clashes} == {"alice", "bob"}
        assert identity_store.find_registration_clashes("c@x.com", "carol") == []

    def test_login_handle_exists(self, identity_store: IdentityStore) -> None:
        identity_store.create_identity(_identity())
        assert identity_store.login_handle_exists("alice")
        assert not identity_store.login_handle_exists("alice-1")

    def test_delete_identity(self, identity_store: IdentityStore) -> None:
        new_id = identity_store.create_identity(_identity())
        assert identity_store.delete_identity(new_id) is True
        assert identity_store.get_by_id(new_id) is None
        assert identity_store.delete_identity(new_id) is False

    def test_ping(self, identity_store: IdentityStore) -> None:
        assert identity_store.ping() is True


class TestSessionStore:
    def test_insert_get_touch_delete(self, session_store: SessionStore) -> None:
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        session = Session("tok", 7, now, now, now + timedelta(hours=24))
        session_store.insert("digest", session)

        record = session_store.get("digest")
        assert record.identity_id == 7
        assert record.expires_at == now + timedelta(hours=24)

        later = now + timedelta(hours=1)
        session_store.touch("digest", last_seen_at=later, expires_at=later + timedelta(hours=24))
        assert session_store.get("digest").expires_at == later + timedelta(hours=24)

        assert session_store.delete("digest") is True
        assert session_store.get("digest") is None
        assert session_store.delete("digest") is False

    def test_purge_expired_keeps_live_rows(self, session_store: SessionStore) -> None:
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        old = now - timedelta(days=2)
        session_store.insert("stale", Session("a", 1, old, old, old + timedelta(hours=24)))
        session_store.insert("live", Session("b", 1, now, now, now + timedelta(hours=24)))
        assert session_store.purge_expired(now) == 1
        assert session_store.get("stale") is None
        assert session_store.get("live") is not None
        assert session_store.count_for_identity(1) == 1


class TestSchemaUpgrade:
    def test_legacy_users_table_gains_external_columns(self) -> None:
        url = memory_url("test_legacy")
        # Holding this engine open keeps the shared in-memory DB alive.
        legacy = create_engine(url)
        with legacy.connect() as conn:
            conn.execute(
                text(
                    "CREATE TABLE users ("
                    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
                    "email_address VARCHAR(255) NOT NULL UNIQUE, "
                    "login_handle VARCHAR(255) NOT NULL UNIQUE, "
                    "contact_number VARCHAR(32), "
                    "password_hash TEXT, "
                    "created_at VARCHAR(32) NOT NULL)"
                )
            )
            conn.execute(
                text(
                    "INSERT INTO users (email_address, login_handle, password_hash, created_at) "
                    "VALUES ('old@x.com', 'old', 'h', '2020-01-01T00:00:00+00:00')"
                )
            )
            conn.commit()

        engine = open_engine(url)
        try:
            columns = {col["name"] for col in inspect(engine).get_columns("users")}
            assert {"external_subject_id", "provider"} <= columns
            existing = IdentityStore(engine).get_by_email("old@x.com")
            assert existing.external_subject_id is None
            assert existing.password_hash == "h"
            # Running the upgrade again is a no-op.
            open_engine(url).dispose()
        finally:
            engine.dispose()
            legacy.dispose()
