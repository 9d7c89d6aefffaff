"""
auth/dependencies.py -- FastAPI Depends() helpers for Basic authentication.

The parsing and verification logic lives in auth/gate.py and knows nothing
about FastAPI. This module only adapts it to the request cycle:

  try_get_identity()      -- soft: None when no Authorization header is sent,
                             401 when a header is sent but fails.
  get_current_identity()  -- hard: 401 when anonymous.
  require_admin()         -- 401 when anonymous, 403 without the Admin role.

The resolved Identity is cached on request.state so stacked dependencies do
not verify the same header twice.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. Nothing else in auth/ does.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import AuthError
from auth.models import Identity

ADMIN_ROLE = "Admin"

_UNAUTHORIZED = {"code": "unauthorized", "message": "Invalid or missing credentials."}
_CHALLENGE = {"WWW-Authenticate": 'Basic realm="authapp", charset="UTF-8"'}
_UNRESOLVED = object()


def try_get_identity(request: Request) -> Identity | None:
    """Authenticate the request from its Authorization header.

    Returns None for anonymous requests (no header, or a non-Basic scheme).
    Raises HTTP 401 when Basic credentials are present but malformed or wrong;
    the error body is the same for every failure kind.
    """
    cached = getattr(request.state, "identity", _UNRESOLVED)
    if cached is not _UNRESOLVED:
        return cached

    gate = request.app.state.identity_service.gate
    result = gate.authenticate_basic(request.headers.get("Authorization"))
    if result.error is AuthError.NO_CREDENTIALS:
        request.state.identity = None
        return None
    if not result.ok:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED, headers=_CHALLENGE)

    request.state.identity = result.identity
    return result.identity


def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises HTTP 401 if the request is anonymous.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED, headers=_CHALLENGE)
    return identity


def require_admin(request: Request) -> Identity:
    """Require the Admin role claim. 401 if anonymous, 403 otherwise."""
    identity = get_current_identity(request)
    if not identity.has_role(ADMIN_ROLE):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin role required."},
        )
    return identity
