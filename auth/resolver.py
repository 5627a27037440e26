"""
auth/resolver.py -- Reconcile a Google profile with the identities table.

Given the provider's stable subject id, its verified email and the caller's
intent (login or signup), decide whether to create, link, reuse or reject an
identity.

Trust anchors:
  email      -- decides *linking*, because the provider has verified it.
  subject id -- decides *repeat login*, because it is provider-stable.

Decision table (first match wins):
  1. no row by subject, no row by email        -> create        (new account)
  2. no row by subject, email row unlinked     -> link          (existing)
  3. subject row, no *other* row holds email   -> re-login      (existing)
  4. no row by subject, email row linked to a
     different subject                         -> AccountConflict (signup)
                                                  ExistingAccountDifferentProvider (login)
  5. anything else                             -> AuthenticationFailed

Intent only picks the message on branch 4. It never changes whether the
caller is authenticated.

Writes: exactly one (insert or update) on branches 1 and 2, none elsewhere.
A lost race (IntegrityError on insert, or a conditional link update that
matched nothing) re-runs the lookup instead of surfacing a store error; the
second pass normally lands on branch 3.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum

from sqlalchemy.exc import IntegrityError

from auth.handles import LoginHandleAllocator
from auth.models import Identity
from auth.results import AuthFailure, FailureCode, Resolution
from auth.store import IdentityStore

logger = logging.getLogger("mauto.auth")

_MAX_ATTEMPTS = 3


class Intent(str, Enum):
    LOGIN = "login"
    SIGNUP = "signup"


def parse_intent(raw: str | None) -> Intent:
    """Interpret the round-tripped OAuth state. Anything but "signup" is a login."""
    return Intent.SIGNUP if raw == Intent.SIGNUP.value else Intent.LOGIN


class _Retry:
    """Sentinel: the store changed underneath us, look again."""


_RETRY = _Retry()


class ExternalIdentityResolver:
    def __init__(self, store: IdentityStore, allocator: LoginHandleAllocator | None = None) -> None:
        self.store = store
        self.allocator = allocator or LoginHandleAllocator(store)

    def resolve(
        self,
        subject_id: str | None,
        email: str | None,
        intent: Intent,
        provider: str = "google",
    ) -> Resolution | AuthFailure:
        """Resolve a provider callback to an identity, or explain why not."""
        if not subject_id or not email:
            logger.warning("Rejected %s profile: subject or verified email missing", provider)
            return AuthFailure.of(FailureCode.INCOMPLETE_EXTERNAL_PROFILE)

        for attempt in range(1, _MAX_ATTEMPTS + 1):
            outcome = self._resolve_once(subject_id, email, intent, provider)
            if not isinstance(outcome, _Retry):
                return outcome
            logger.info("Identity store changed during %s resolution (attempt %d); retrying", provider, attempt)

        logger.warning("Gave up resolving %s subject after %d attempts", provider, _MAX_ATTEMPTS)
        return AuthFailure.of(FailureCode.AUTHENTICATION_FAILED)

    def _resolve_once(
        self, subject_id: str, email: str, intent: Intent, provider: str
    ) -> Resolution | AuthFailure | _Retry:
        by_subject = self.store.get_by_subject(subject_id)
        by_email = self.store.get_by_email(email)

        if by_subject is None and by_email is None:
            return self._create(subject_id, email, provider)

        if by_subject is None and by_email.external_subject_id is None:
            return self._link(by_email, subject_id, provider)

        if by_subject is not None and (by_email is None or by_email.id == by_subject.id):
            logger.info("Identity %d signed in via %s", by_subject.id, provider)
            return Resolution(identity=by_subject, is_new_account=False)

        if by_subject is None:
            logger.warning(
                "Identity %d already linked to another %s account (intent=%s)",
                by_email.id,
                provider,
                intent.value,
            )
            if intent is Intent.SIGNUP:
                return AuthFailure.of(FailureCode.ACCOUNT_CONFLICT)
            return AuthFailure.of(FailureCode.EXISTING_ACCOUNT_DIFFERENT_PROVIDER)

        logger.warning(
            "%s subject belongs to identity %d but its email belongs to identity %d",
            provider,
            by_subject.id,
            by_email.id,
        )
        return AuthFailure.of(FailureCode.AUTHENTICATION_FAILED)

    def _create(self, subject_id: str, email: str, provider: str) -> Resolution | AuthFailure | _Retry:
        candidate = Identity(
            email_address=email,
            login_handle=self.allocator.allocate(email),
            external_subject_id=subject_id,
            provider=provider,
        )
        try:
            new_id = self.store.create_identity(candidate)
        except IntegrityError:
            return _RETRY

        identity = self.store.get_by_id(new_id)
        if identity is None:
            logger.error("Identity insert for %s subject could not be read back", provider)
            return AuthFailure.of(FailureCode.ACCOUNT_CREATION_FAILED)
        logger.info("Identity %d created via %s (handle %r)", identity.id, provider, identity.login_handle)
        return Resolution(identity=identity, is_new_account=True)

    def _link(self, identity: Identity, subject_id: str, provider: str) -> Resolution | _Retry:
        try:
            linked = self.store.link_external(identity.id, provider, subject_id)
        except IntegrityError:
            return _RETRY
        if not linked:
            return _RETRY
        logger.info("Identity %d linked to %s", identity.id, provider)
        return Resolution(
            identity=replace(identity, provider=provider, external_subject_id=subject_id),
            is_new_account=False,
        )
