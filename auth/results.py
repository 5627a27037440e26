"""
auth/results.py -- Tagged result values returned by the identity components.

Every component returns either its success value or an AuthFailure. Nothing
in auth/ raises for an identity outcome; the gateway in api/ is the single
place where failures become HTTP responses.

Guidance strings are user-facing. AccountConflict and
ExistingAccountDifferentProvider deliberately differ so the user is pointed
at the recovery path that fits the page they came from.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from auth.models import Identity


class FailureCode(str, Enum):
    NO_SUCH_ACCOUNT = "no_such_account"
    BAD_CREDENTIALS = "bad_credentials"
    ALREADY_REGISTERED = "already_registered"
    INCOMPLETE_EXTERNAL_PROFILE = "incomplete_external_profile"
    ACCOUNT_CONFLICT = "account_conflict"
    EXISTING_ACCOUNT_DIFFERENT_PROVIDER = "existing_account_different_provider"
    AUTHENTICATION_FAILED = "authentication_failed"
    ACCOUNT_CREATION_FAILED = "account_creation_failed"
    INVALID_SESSION = "invalid_session"


_GUIDANCE: dict[FailureCode, str] = {
    FailureCode.NO_SUCH_ACCOUNT: "No account found with this email. Please sign up first.",
    FailureCode.BAD_CREDENTIALS: "Incorrect password. Please try again.",
    FailureCode.ALREADY_REGISTERED: "This email is already registered. Please log in instead.",
    FailureCode.INCOMPLETE_EXTERNAL_PROFILE: (
        "Google profile is missing required information. "
        "Please ensure your Google account has a valid, verified email address."
    ),
    FailureCode.ACCOUNT_CONFLICT: (
        "This email is already registered with a different account. Please:\n\n"
        "• Sign in with your regular email/password instead\n"
        "• Or contact support to link your Google account\n"
        "• Or use a different Google account"
    ),
    FailureCode.EXISTING_ACCOUNT_DIFFERENT_PROVIDER: (
        "This email is already registered with a regular account. "
        "Please sign in using your email and password instead."
    ),
    FailureCode.AUTHENTICATION_FAILED: "Authentication failed. Please try again or contact support.",
    FailureCode.ACCOUNT_CREATION_FAILED: (
        "Failed to create your account. Please try again or contact support if the problem persists."
    ),
    FailureCode.INVALID_SESSION: "Session expired. Please login again.",
}


@dataclass(frozen=True)
class AuthFailure:
    """A recoverable identity failure: machine-readable code + guidance text."""

    code: FailureCode
    message: str

    @classmethod
    def of(cls, code: FailureCode, message: str | None = None) -> AuthFailure:
        """Build a failure with the standard guidance for code unless overridden."""
        return cls(code=code, message=message or _GUIDANCE[code])


@dataclass(frozen=True)
class Resolution:
    """Successful outcome of an external identity resolution.

    is_new_account only chooses between a "welcome" and "welcome back"
    message; it carries no authorization weight.
    """

    identity: Identity
    is_new_account: bool
