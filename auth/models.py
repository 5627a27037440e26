"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores, verifiers and the resolver do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Identity:
    """The durable user record shared by password and Google sign-in.

    email_address is the join key the resolver uses to decide whether an
    incoming Google profile refers to an existing identity. Lookup is exact
    and case-sensitive; emails are stored as submitted.

    password_hash is None for identities created purely through Google.
    external_subject_id / provider are None until a provider is linked, and
    once set they are never moved to another identity.
    """

    email_address: str
    login_handle: str
    id: int | None = None
    contact_number: str | None = None
    password_hash: str | None = None  # None = OAuth-only identity
    external_subject_id: str | None = None  # provider's stable user ID ("sub")
    provider: str | None = None  # "google"
    created_at: str | None = None


@dataclass
class Session:
    """Server-side proof that a client is associated with an identity.

    session_id is the raw opaque token held by the client. The store only
    keeps its HMAC digest, so a leaked sessions table cannot be replayed.
    expires_at always equals last_seen_at + TTL (rolling expiry).
    """

    session_id: str
    identity_id: int
    created_at: datetime
    last_seen_at: datetime
    expires_at: datetime


@dataclass
class ExternalProfile:
    """What the OAuth callback yields once the code exchange has completed.

    email is only populated when the provider marked it verified.
    """

    subject_id: str | None
    email: str | None
    provider: str = "google"
    raw: dict = field(default_factory=dict)
