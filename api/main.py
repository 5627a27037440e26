"""
api/main.py -- FastAPI application factory for the account identity service.

create_app(settings) builds the whole HTTP surface from an explicit Settings
object. Nothing in here reads the environment; asgi.py does that once and
tests pass their own Settings.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- authlib keeps the OAuth state here between
                              the Google redirect and the callback

Lifespan handles startup (database engine, stores, OAuth registry, gateway,
purge task) and shutdown (cancel purge task, dispose engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.gateway import AuthGateway
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.dependencies import get_current_identity
from auth.models import Identity
from auth.oauth import build_oauth
from auth.store import IdentityStore, SessionStore, open_engine
from core.config import Settings

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("mauto.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired session rows every interval_seconds.

    Expired sessions are already rejected by SessionManager.validate, so this
    loop only bounds table growth. Any store error is logged and skips one
    round; the task keeps running.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            app.state.gateway.sessions.purge_expired()
        except SQLAlchemyError:
            logger.exception("Session purge failed; retrying in %ds", interval_seconds)


def create_app(settings: Settings) -> FastAPI:
    """Build the FastAPI application around an explicit Settings object."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Open the store, wire the gateway, start the purge task.

        Startup order matters:
          1. Engine first -- create_all() must run before any store query.
          2. Gateway second -- owns the stores and the OAuth registry.
          3. Purge task last -- references app.state.gateway.
        """
        logger.info("Identity API starting up")
        engine = open_engine(settings.database_url)
        app.state.engine = engine
        app.state.gateway = AuthGateway(
            settings,
            IdentityStore(engine),
            SessionStore(engine),
            build_oauth(settings),
        )
        if not settings.persistent_store:
            logger.warning("Session store is IN-MEMORY: every session is lost on restart")
        logger.info(
            "Auth initialized (google=%s, session_ttl=%ds)",
            settings.google_enabled,
            settings.session_ttl_seconds,
        )
        app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.session_purge_interval_seconds))

        yield

        app.state.purge_task.cancel()
        engine.dispose()
        logger.info("Identity API shutdown complete")

    app = FastAPI(
        title="Identity API",
        description="Password and Google sign-in with database-backed rolling sessions.",
        version=VERSION,
        lifespan=lifespan,
        # Built-in /docs and /redoc are replaced below by auth-protected routes.
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings

    # -----------------------------------------------------------------------
    # Middleware stack -- add_middleware() wraps everything added before it,
    # so registration runs innermost first.
    # -----------------------------------------------------------------------

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        same_site=settings.cookie_samesite,
        https_only=settings.cookie_secure,
    )
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        # The session cookie must travel on cross-origin XHR from the frontend.
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    # SlowAPI looks for app.state.limiter by convention.
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])

    # -----------------------------------------------------------------------
    # Auth-protected API documentation
    # -----------------------------------------------------------------------

    @app.get("/docs", include_in_schema=False)
    async def docs(identity: Identity = Depends(get_current_identity)):
        """Swagger UI -- requires a session."""
        return get_swagger_ui_html(openapi_url="/openapi.json", title="Identity API")

    @app.get("/redoc", include_in_schema=False)
    async def redoc(identity: Identity = Depends(get_current_identity)):
        """ReDoc UI -- requires a session."""
        return get_redoc_html(openapi_url="/openapi.json", title="Identity API")

    # -----------------------------------------------------------------------
    # Exception handlers -- one ErrorResponse envelope for every failure.
    # -----------------------------------------------------------------------

    @app.exception_handler(RateLimitExceeded)
    def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        """Return 429 with Retry-After when a rate limit is exceeded.

        Must stay synchronous: SlowAPIMiddleware calls it directly and returns
        the result without awaiting it.
        """
        retry_after = int(getattr(exc, "retry_after", 60))
        response = _error(429, "rate_limited", "Too many requests.", detail=str(exc))
        response.headers["Retry-After"] = str(retry_after)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Structured error for HTTPException, passing dict details through as-is."""
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
        return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))

    @app.exception_handler(OperationalError)
    async def store_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
        """The identity/session database is unreachable. Clients may retry."""
        logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc.orig)
        response = _error(503, "store_unavailable", "The account store is temporarily unavailable.")
        response.headers["Retry-After"] = "5"
        return response

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all. The traceback goes to the log, never to the response body."""
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return _error(500, "internal_error", "An unexpected error occurred.")

    # -----------------------------------------------------------------------
    # Health -- no rate limit, no auth.
    # -----------------------------------------------------------------------

    @app.get("/api/v1/health", tags=["Health"])
    def health(request: Request) -> HealthResponse:
        """Return liveness, version and store reachability."""
        try:
            db_ok = request.app.state.gateway.identities.ping()
        except OperationalError:
            db_ok = False
        return HealthResponse(
            status="healthy" if db_ok else "degraded",
            version=VERSION,
            components={
                "app": "ok",
                "database": "ok" if db_ok else "error",
                "session_store": "database" if settings.persistent_store else "memory",
            },
        )

    return app


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )
