"""
auth/passwords.py -- Password hashing, verification and local registration.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). Cost factor 10, the
       same work factor existing hashes in the users table were written with.

  Timing: verify() always runs exactly one bcrypt comparison. When the email
       is unknown, or the identity has no password (Google-only), it checks
       against _DUMMY_HASH instead, so response time does not reveal which
       branch failed.

  The failure *codes* still differ (no_such_account vs bad_credentials) so
       the login page can tell a first-time visitor to sign up. That leaks
       account existence by message, not by timing, and matches how the site
       has always behaved.

  Emails are compared exactly as stored. There is no normalization layer;
       "A@x.com" and "a@x.com" are different accounts.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

import bcrypt
from sqlalchemy.exc import IntegrityError

from auth.models import Identity
from auth.results import AuthFailure, FailureCode
from auth.store import IdentityStore

logger = logging.getLogger("mauto.auth")

_BCRYPT_ROUNDS = 10
# bcrypt only reads the first 72 bytes; passing more raises on bcrypt>=5.
_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


# Computed once at import so the first failed login is not measurably faster
# than later ones.
_DUMMY_HASH: str = hash_password("mauto_timing_dummy")


class PasswordVerifier:
    """Checks email + secret pairs and registers password accounts.

    Read-only against the store for verify(); register() performs the single
    insert for a password signup.
    """

    def __init__(self, store: IdentityStore) -> None:
        self.store = store

    def verify(self, email: str, password: str) -> Identity | AuthFailure:
        identity = self.store.get_by_email(email)
        if identity is None:
            verify_password(password, _DUMMY_HASH)
            return AuthFailure.of(FailureCode.NO_SUCH_ACCOUNT)
        if identity.password_hash is None:
            verify_password(password, _DUMMY_HASH)
            return AuthFailure.of(
                FailureCode.BAD_CREDENTIALS,
                "This account uses Google sign-in. Please continue with Google.",
            )
        if not verify_password(password, identity.password_hash):
            return AuthFailure.of(FailureCode.BAD_CREDENTIALS)
        return identity

    def register(self, email: str, password: str, login_handle: str, contact_number: str) -> Identity | AuthFailure:
        """Create a password identity, rejecting a taken email or login handle.

        The handle is chosen by the user, so a collision is reported rather
        than suffixed. A uniqueness violation on insert means a concurrent
        signup won; the clash is re-read and reported the same way.
        """
        clash = self._registration_clash(email, login_handle)
        if clash is not None:
            return clash

        candidate = Identity(
            email_address=email,
            login_handle=login_handle,
            contact_number=contact_number,
            password_hash=hash_password(password),
        )
        try:
            self.store.create_identity(candidate)
        except IntegrityError:
            logger.info("Signup for %r lost a uniqueness race; re-checking", login_handle)
            return self._registration_clash(email, login_handle) or AuthFailure.of(FailureCode.ALREADY_REGISTERED)

        identity = self.store.get_by_email(email)
        if identity is None:
            logger.error("Signup insert for login handle %r could not be read back", login_handle)
            return AuthFailure.of(FailureCode.ACCOUNT_CREATION_FAILED)
        logger.info("Password identity %d registered", identity.id)
        return identity

    def _registration_clash(self, email: str, login_handle: str) -> AuthFailure | None:
        existing = self.store.find_registration_clashes(email, login_handle)
        if not existing:
            return None
        email_taken = any(i.email_address == email for i in existing)
        handle_taken = any(i.login_handle == login_handle for i in existing)
        if email_taken and handle_taken:
            message = "This email and username are already registered. Please log in instead."
        elif email_taken:
            message = "This email is already registered. Please log in instead."
        else:
            message = "This username is already taken. Please choose a different username."
        return AuthFailure.of(FailureCode.ALREADY_REGISTERED, message)
