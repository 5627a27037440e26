"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup             -- password signup; sets session cookie
  POST /api/v1/auth/login              -- password login; sets session cookie
  GET|POST /api/v1/auth/logout         -- destroys the session; clears cookie
  GET  /api/v1/auth/me                 -- who am I (never 401s; reports authenticated)
  GET  /api/v1/auth/google             -- start Google OAuth (?intent=login|signup)
  GET  /api/v1/auth/google/callback    -- Google OAuth callback
  GET  /api/v1/auth/google/debug       -- OAuth config summary (DEBUG only)

Handlers only pull inputs off the request and hand them to the AuthGateway
on app.state; the gateway owns every response shape.

Security:
  POST /login and POST /signup are rate-limited to 10 requests/minute per IP.
  Cache-Control: no-store on every response that sets a session cookie.
"""

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from api.gateway import AuthGateway
from api.limiter import CREDENTIAL_RATE_LIMIT, limiter
from api.models import AuthResponse, GoogleDebugResponse, LoginRequest, LogoutResponse, MeResponse, SignupRequest

# Auth policy:
# - every route here is public; each one establishes or inspects a session
#   rather than requiring one.
router = APIRouter()


def _gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


# ---------------------------------------------------------------------------
# Password flows
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=AuthResponse)
@limiter.limit(CREDENTIAL_RATE_LIMIT)  # under @router so FastAPI registers the limited wrapper
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create a password account and sign it in."""
    return _gateway(request).signup(body)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(CREDENTIAL_RATE_LIMIT)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Distinct failure codes: no_such_account (go sign up) vs bad_credentials.
    """
    return _gateway(request).login(body)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.api_route("/auth/logout", methods=["GET", "POST"], response_model=LogoutResponse)
def logout(request: Request) -> JSONResponse:
    """End the current session. Safe to call without one."""
    return _gateway(request).logout(request)


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request) -> JSONResponse:
    """Report whether the caller holds a live session, rolling it forward if so."""
    return _gateway(request).whoami(request)


# ---------------------------------------------------------------------------
# Google OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/google")
async def google_start(request: Request, intent: str = "login") -> Response:
    """Redirect to Google. intent is echoed back as OAuth state on the callback."""
    return await _gateway(request).oauth_start(request, intent)


@router.get("/auth/google/callback", name="google_callback")
async def google_callback(request: Request) -> RedirectResponse:
    """Handle Google's redirect: resolve the identity, set the cookie, redirect."""
    return await _gateway(request).oauth_callback(request)


@router.get("/auth/google/debug", response_model=GoogleDebugResponse)
def google_debug(request: Request) -> GoogleDebugResponse:
    """Expose a secret-free view of the Google OAuth configuration in DEBUG mode."""
    gateway = _gateway(request)
    if not gateway.settings.debug:
        raise HTTPException(status_code=404)
    return gateway.google_debug()
