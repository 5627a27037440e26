"""
auth/oauth.py -- Authlib Google OAuth/OIDC registration and profile extraction.

build_oauth(settings) returns an authlib registry with Google registered
only when both client ID and secret are configured. The registry is built
once from the Settings object handed to create_app(); nothing here reads
the environment.

Security notes:
  Email verification is mandatory. profile_from_token() only reports an email
  when the id_token says email_verified=true. An unverified address is
  treated as missing, and the resolver then rejects the profile as
  incomplete before touching the store.

  The OAuth "state" parameter carries the caller's intent ("login" or
  "signup") through the round trip. Authlib stores it in the Starlette
  session and checks that the callback comes back to the same browser, but
  the value itself is not signed: a crafted link can flip login<->signup.
  That only changes which error message a conflicting user sees.

  The code exchange is bounded by oauth_timeout_seconds. A timeout or any
  authlib/httpx error becomes AuthenticationFailed, never a hung request.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.starlette_client import OAuth

from auth.models import ExternalProfile
from auth.results import AuthFailure, FailureCode
from core.config import Settings

logger = logging.getLogger("mauto.auth.oauth")

GOOGLE = "google"
_GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"


def build_oauth(settings: Settings) -> OAuth:
    """Create the authlib registry for the configured providers."""
    oauth = OAuth()
    if settings.google_enabled:
        oauth.register(
            name=GOOGLE,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url=_GOOGLE_DISCOVERY_URL,
            client_kwargs={"scope": "openid email profile", "timeout": settings.oauth_timeout_seconds},
        )
        logger.info("Google OAuth provider registered")
    else:
        logger.info("Google OAuth not configured; /auth/google will be unavailable")
    return oauth


async def fetch_external_profile(client, request, timeout: float) -> ExternalProfile | AuthFailure:
    """Exchange the callback's authorization code and extract the profile.

    Args:
        client:  The authlib client for the provider.
        request: The Starlette callback request (code + state in the query).
        timeout: Upper bound in seconds for the whole exchange.
    """
    try:
        token = await asyncio.wait_for(client.authorize_access_token(request), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("OAuth code exchange timed out after %.1fs", timeout)
        return AuthFailure.of(FailureCode.AUTHENTICATION_FAILED)
    except (AuthlibBaseError, httpx.HTTPError) as exc:
        logger.warning("OAuth code exchange failed: %s", exc)
        return AuthFailure.of(FailureCode.AUTHENTICATION_FAILED)
    return profile_from_token(token)


def profile_from_token(token: dict, provider: str = GOOGLE) -> ExternalProfile:
    """Pull (subject, verified email) out of an OIDC token response.

    Missing pieces are returned as None rather than raised; the resolver
    decides what an incomplete profile means.
    """
    userinfo = dict(token.get("userinfo") or {})
    subject = userinfo.get("sub")
    email = userinfo.get("email") if userinfo.get("email_verified") in (True, "true") else None
    if userinfo.get("email") and email is None:
        logger.warning("%s returned an unverified email; ignoring it", provider)
    return ExternalProfile(
        subject_id=str(subject) if subject else None,
        email=email or None,
        provider=provider,
        raw=userinfo,
    )
