"""
auth/handles.py -- Login handle allocation for identities created via OAuth.

A Google sign-up has no user-chosen handle, so one is derived from the local
part of the email ("jane.doe@x.com" -> "jane.doe"). If that is taken, a
random numeric suffix is tried ("jane.doe-4821"), each candidate checked
against the store. After a few random misses the allocator walks ascending
suffixes, which always terminates with a free handle.

Check-then-insert is a read-then-write: two requests can pick the same free
candidate. The login_handle UNIQUE constraint turns that into an
IntegrityError on insert, and the resolver simply allocates again.
"""

from __future__ import annotations

import random
from collections.abc import Callable

from auth.store import IdentityStore

_RANDOM_ATTEMPTS = 5
_FALLBACK_HANDLE = "user"


def _random_suffix() -> int:
    return random.randint(0, 9999)  # noqa: S311 -- uniqueness, not secrecy


class LoginHandleAllocator:
    def __init__(self, store: IdentityStore, suffix: Callable[[], int] = _random_suffix) -> None:
        self.store = store
        self._suffix = suffix

    def allocate(self, email: str) -> str:
        """Return a login handle derived from email that is free right now."""
        base = email.split("@", 1)[0].strip() or _FALLBACK_HANDLE
        if not self.store.login_handle_exists(base):
            return base
        for _ in range(_RANDOM_ATTEMPTS):
            candidate = f"{base}-{self._suffix()}"
            if not self.store.login_handle_exists(candidate):
                return candidate
        n = 1
        while self.store.login_handle_exists(f"{base}-{n}"):
            n += 1
        return f"{base}-{n}"
