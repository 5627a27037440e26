"""
api/gateway.py -- The Auth Gateway: public surface of the identity core.

AuthGateway is constructed once in the app lifespan with an explicit
Settings object and the shared stores, then reached by route handlers via
request.app.state.gateway. It performs no identity logic itself:

  signup         -> PasswordVerifier.register  -> SessionManager.create
  login          -> PasswordVerifier.verify    -> SessionManager.create
  oauth_callback -> fetch_external_profile -> ExternalIdentityResolver.resolve
                                               -> SessionManager.create
  whoami         -> SessionManager.validate
  logout         -> SessionManager.destroy

Each component returns a value or an AuthFailure; this module is the only
place those become HTTP responses (JSON error envelope for API calls,
redirects with ?error=... for the browser OAuth flow).

Session handle transport: an httpOnly cookie (settings.session_cookie_name),
re-issued on every successful cookie-borne whoami so the browser expiry rolls
with the server. API clients may send "Authorization: Bearer <token>" instead;
when both are present, whichever validates first (cookie, then Bearer) wins.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlencode

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.starlette_client import OAuth
from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from api.models import (
    AuthResponse,
    ErrorDetail,
    ErrorResponse,
    GoogleDebugResponse,
    LoginRequest,
    LogoutResponse,
    MeResponse,
    SignupRequest,
    UserSummary,
)
from auth.models import Identity
from auth.oauth import GOOGLE, fetch_external_profile
from auth.passwords import PasswordVerifier
from auth.resolver import ExternalIdentityResolver, Intent, parse_intent
from auth.results import AuthFailure, FailureCode
from auth.sessions import SessionManager
from auth.store import IdentityStore, SessionStore
from core.config import Settings

logger = logging.getLogger("mauto.api")

CALLBACK_PATH = "/api/v1/auth/google/callback"

_FAILURE_STATUS: dict[FailureCode, int] = {
    FailureCode.NO_SUCH_ACCOUNT: 401,
    FailureCode.BAD_CREDENTIALS: 401,
    FailureCode.INVALID_SESSION: 401,
    FailureCode.AUTHENTICATION_FAILED: 401,
    FailureCode.ALREADY_REGISTERED: 409,
    FailureCode.ACCOUNT_CONFLICT: 409,
    FailureCode.EXISTING_ACCOUNT_DIFFERENT_PROVIDER: 409,
    FailureCode.INCOMPLETE_EXTERNAL_PROFILE: 400,
    FailureCode.ACCOUNT_CREATION_FAILED: 500,
}


class AuthGateway:
    def __init__(
        self,
        settings: Settings,
        identities: IdentityStore,
        session_store: SessionStore,
        oauth: OAuth,
    ) -> None:
        self.settings = settings
        self.identities = identities
        self.oauth = oauth
        self.passwords = PasswordVerifier(identities)
        self.resolver = ExternalIdentityResolver(identities)
        self.sessions = SessionManager(
            session_store,
            identities,
            secret_key=settings.secret_key,
            ttl_seconds=settings.session_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Credential extraction
    # ------------------------------------------------------------------

    def _candidate_tokens(self, request: Request) -> list[tuple[str, bool]]:
        """(token, from_cookie) pairs in the order they are tried: cookie, then Bearer."""
        candidates = []
        cookie = request.cookies.get(self.settings.session_cookie_name)
        if cookie:
            candidates.append((cookie, True))
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer ") and auth_header[7:]:
            candidates.append((auth_header[7:], False))
        return candidates

    def _authenticate(self, request: Request) -> tuple[Identity | None, str | None, bool]:
        """Validate each presented token in turn (rolling its expiry on success).

        Returns (identity, token, from_cookie) for the first live session, so a
        stale cookie does not mask a valid Bearer token.
        """
        for token, from_cookie in self._candidate_tokens(request):
            result = self.sessions.validate(token)
            if not isinstance(result, AuthFailure):
                return result, token, from_cookie
        return None, None, False

    def current_identity(self, request: Request) -> Identity | None:
        return self._authenticate(request)[0]

    # ------------------------------------------------------------------
    # Password flows
    # ------------------------------------------------------------------

    def signup(self, body: SignupRequest) -> JSONResponse:
        result = self.passwords.register(body.email, body.password, body.login_id, body.contact_no)
        if isinstance(result, AuthFailure):
            logger.info("Signup rejected: %s", result.code.value)
            return self.failure_response(result)
        return self._signed_in(result)

    def login(self, body: LoginRequest) -> JSONResponse:
        result = self.passwords.verify(body.email, body.password)
        if isinstance(result, AuthFailure):
            logger.info("Password login rejected: %s", result.code.value)
            return self.failure_response(result)
        return self._signed_in(result)

    def _signed_in(self, identity: Identity) -> JSONResponse:
        session = self.sessions.create(identity.id)
        resp = JSONResponse(
            status_code=200,
            content=AuthResponse(user=UserSummary.from_identity(identity)).model_dump(),
        )
        self._set_session_cookie(resp, session.session_id)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    # ------------------------------------------------------------------
    # Session flows
    # ------------------------------------------------------------------

    def whoami(self, request: Request) -> JSONResponse:
        """Report the caller's session.

        The cookie is re-issued only when the session arrived as a cookie;
        Bearer clients never get one planted. A presented cookie that did not
        validate is cleared.
        """
        identity, token, from_cookie = self._authenticate(request)
        has_cookie = bool(request.cookies.get(self.settings.session_cookie_name))
        if identity is None:
            resp = JSONResponse(content=MeResponse(authenticated=False).model_dump())
        else:
            resp = JSONResponse(
                content=MeResponse(authenticated=True, user=UserSummary.from_identity(identity)).model_dump()
            )
            resp.headers["Cache-Control"] = "no-store"
        if from_cookie:
            self._set_session_cookie(resp, token)
        elif has_cookie:
            # Stale cookie: drop it so the client stops presenting it.
            self._clear_session_cookie(resp)
        return resp

    def logout(self, request: Request) -> JSONResponse:
        """Destroy every session the request presents. Idempotent."""
        for token, _from_cookie in self._candidate_tokens(request):
            self.sessions.destroy(token)
        resp = JSONResponse(content=LogoutResponse().model_dump())
        self._clear_session_cookie(resp)
        return resp

    # ------------------------------------------------------------------
    # Google OAuth flow
    # ------------------------------------------------------------------

    def callback_url(self) -> str:
        return f"{self.settings.base_url.rstrip('/')}{CALLBACK_PATH}"

    async def oauth_start(self, request: Request, intent: str | None) -> Response:
        """Redirect the browser to Google, carrying intent as the OAuth state."""
        if not self.settings.google_enabled:
            return self.error_response(503, "oauth_not_configured", "Google OAuth not configured.")
        client = self.oauth.create_client(GOOGLE)
        parsed = parse_intent(intent)
        timeout = self.settings.oauth_timeout_seconds
        try:
            # Loads Google's discovery document on first use, so this can hit the network.
            return await asyncio.wait_for(
                client.authorize_redirect(request, self.callback_url(), state=parsed.value),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Google authorization redirect timed out after %.1fs", timeout)
        except (AuthlibBaseError, httpx.HTTPError) as exc:
            logger.warning("Google authorization redirect failed: %s", exc)
        return self._oauth_failure_redirect(parsed, AuthFailure.of(FailureCode.AUTHENTICATION_FAILED))

    async def oauth_callback(self, request: Request) -> RedirectResponse:
        """Finish the Google round trip and sign the browser in.

        Success redirects to /auth/result?new=1|0 (welcome vs welcome back).
        Failure redirects back to the page the flow started from, with the
        failure code and its guidance text in the query string.
        """
        intent = parse_intent(request.query_params.get("state"))
        if not self.settings.google_enabled:
            return self._oauth_failure_redirect(intent, AuthFailure.of(FailureCode.AUTHENTICATION_FAILED))

        client = self.oauth.create_client(GOOGLE)
        profile = await fetch_external_profile(client, request, self.settings.oauth_timeout_seconds)
        if isinstance(profile, AuthFailure):
            return self._oauth_failure_redirect(intent, profile)

        outcome = self.resolver.resolve(profile.subject_id, profile.email, intent, provider=profile.provider)
        if isinstance(outcome, AuthFailure):
            return self._oauth_failure_redirect(intent, outcome)

        session = self.sessions.create(outcome.identity.id)
        is_new = "1" if outcome.is_new_account else "0"
        resp = RedirectResponse(f"/auth/result?new={is_new}", status_code=302)
        self._set_session_cookie(resp, session.session_id)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    def _oauth_failure_redirect(self, intent: Intent, failure: AuthFailure) -> RedirectResponse:
        logger.info("Google sign-in failed: %s (intent=%s)", failure.code.value, intent.value)
        query = urlencode({"error": "google_auth_failed", "code": failure.code.value, "message": failure.message})
        return RedirectResponse(f"/{intent.value}?{query}", status_code=302)

    def google_debug(self) -> GoogleDebugResponse:
        client_id = self.settings.google_client_id
        return GoogleDebugResponse(
            has_client_id=bool(client_id),
            client_id_prefix=client_id[:8] if client_id else None,
            has_client_secret=bool(self.settings.google_client_secret),
            callback_url=self.callback_url(),
            base_url=self.settings.base_url,
        )

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    def failure_response(self, failure: AuthFailure) -> JSONResponse:
        return self.error_response(_FAILURE_STATUS[failure.code], failure.code.value, failure.message)

    @staticmethod
    def error_response(status_code: int, code: str, message: str) -> JSONResponse:
        resp = JSONResponse(
            status_code=status_code,
            content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    def _set_session_cookie(self, response: Response, token: str) -> None:
        """Write the session token as an httpOnly cookie whose lifetime matches the TTL."""
        response.set_cookie(
            self.settings.session_cookie_name,
            value=token,
            max_age=self.settings.session_ttl_seconds,
            httponly=True,
            samesite=self.settings.cookie_samesite,
            secure=self.settings.cookie_secure,
        )

    def _clear_session_cookie(self, response: Response) -> None:
        response.delete_cookie(
            self.settings.session_cookie_name,
            httponly=True,
            samesite=self.settings.cookie_samesite,
            secure=self.settings.cookie_secure,
        )
