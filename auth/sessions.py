"""
auth/sessions.py -- Server-side sessions with rolling expiry.

Security design decisions:
  Tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. The store
       keeps HMAC-SHA256(SECRET_KEY, token) as the row key, so lookup is a
       single indexed read and a copy of the sessions table is useless
       without the key.

  Expiry: expires_at = last_seen_at + TTL. Every successful validate()
       pushes both forward. Expiry is checked lazily at validation time; the
       purge_expired() sweep only reclaims space.

  Orphans: a session whose identity has been deleted fails validation and
       is removed. It never raises.

  Multiple concurrent sessions per identity are allowed (one per device).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.models import Identity, Session
from auth.results import AuthFailure, FailureCode
from auth.store import IdentityStore, SessionStore

logger = logging.getLogger("mauto.auth.sessions")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Issues, validates and destroys sessions.

    Usage:
        manager = SessionManager(session_store, identity_store, settings.secret_key, settings.session_ttl_seconds)
        session = manager.create(identity.id)
        result = manager.validate(session.session_id)   # Identity or AuthFailure
        manager.destroy(session.session_id)
    """

    def __init__(
        self,
        sessions: SessionStore,
        identities: IdentityStore,
        secret_key: str,
        ttl_seconds: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.sessions = sessions
        self.identities = identities
        self._secret = secret_key.encode("utf-8")
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def _key(self, token: str) -> str:
        return hmac.new(self._secret, token.encode("utf-8"), hashlib.sha256).hexdigest()

    def create(self, identity_id: int) -> Session:
        """Start a new session for identity_id and persist it."""
        now = self._clock()
        session = Session(
            session_id=secrets.token_urlsafe(32),
            identity_id=identity_id,
            created_at=now,
            last_seen_at=now,
            expires_at=now + self.ttl,
        )
        self.sessions.insert(self._key(session.session_id), session)
        logger.info("Session created for identity %d", identity_id)
        return session

    def validate(self, token: str | None) -> Identity | AuthFailure:
        """Return the identity behind token and roll its expiry forward."""
        if not token:
            return AuthFailure.of(FailureCode.INVALID_SESSION)
        key = self._key(token)
        record = self.sessions.get(key)
        if record is None:
            return AuthFailure.of(FailureCode.INVALID_SESSION)

        now = self._clock()
        if now > record.expires_at:
            self.sessions.delete(key)
            return AuthFailure.of(FailureCode.INVALID_SESSION)

        identity = self.identities.get_by_id(record.identity_id)
        if identity is None:
            logger.warning("Session references missing identity %d; removing it", record.identity_id)
            self.sessions.delete(key)
            return AuthFailure.of(FailureCode.INVALID_SESSION)

        self.sessions.touch(key, last_seen_at=now, expires_at=now + self.ttl)
        return identity

    def destroy(self, token: str | None) -> None:
        """End a session. Destroying an unknown or already-ended session is a no-op."""
        if token:
            self.sessions.delete(self._key(token))

    def purge_expired(self) -> int:
        removed = self.sessions.purge_expired(self._clock())
        if removed:
            logger.info("Purged %d expired session(s)", removed)
        return removed
