"""
auth/dependencies.py -- FastAPI Depends() helper for session authentication.

Resolves the caller through the AuthGateway on app.state: the gateway reads
the session token (cookie first, then "Authorization: Bearer"), and the
SessionManager validates it and rolls its expiry. The identity is returned
to the route as an explicit parameter; nothing is stashed in ambient state.

Layer rule: no imports from api/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Identity


def get_current_identity(request: Request) -> Identity:
    """Require a valid session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = request.app.state.gateway.current_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return identity
