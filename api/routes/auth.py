"""
api/routes/auth.py -- Login and self-service endpoints.

Routes:
  POST /api/auth/login            -- verify email/password; returns the user
  GET  /api/auth/me               -- claims of the Basic-authenticated caller
  POST /api/auth/change-password  -- replace own password (requires auth)

Security:
  [H2] POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  [T2] Unknown email, wrong password and inactive account all return the same
       401 body. The gate collapses them before this module sees the result.
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import ChangePasswordRequest, LoginRequest, LoginResponse, MeResponse, UserResponse
from auth.dependencies import get_current_identity
from auth.errors import ValidationError
from auth.models import Identity
from auth.service import IdentityService
from core.config import get_settings

# Auth policy:
# - POST /api/auth/login:            public -- login endpoint must be unauthenticated
# - GET  /api/auth/me:               requires auth (get_current_identity)
# - POST /api/auth/change-password:  requires auth (get_current_identity)
router = APIRouter()


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _unauthorized() -> JSONResponse:
    resp = JSONResponse(
        status_code=401,
        content={"error": {"code": "unauthorized", "message": "Invalid email or password."}},
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(_login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Returns 400 when either field is blank, 401 on any credential failure,
    and 200 with the user representation on success.
    """
    if not body.email or not body.email.strip() or not body.password or not body.password.strip():
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "Email and password are required."},
        )

    service: IdentityService = request.app.state.identity_service
    if not service.validate_credentials(body.email, body.password):
        return _unauthorized()

    user = service.get_user_by_email(body.email)
    if user is None:
        # Credentials validated but the row vanished before the read.
        return _unauthorized()

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(authenticated=True, user=UserResponse.from_user(user)).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/me", response_model=MeResponse)
async def me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    """Return the name and role claims of the authenticated caller."""
    return MeResponse.from_identity(identity)


@router.post("/auth/change-password", status_code=204)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
) -> Response:
    """Change the caller's own password. 400 if the current password is wrong."""
    service: IdentityService = request.app.state.identity_service
    try:
        changed = service.change_password(identity.user_id, body.current_password, body.new_password)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"code": "validation_error", "message": str(exc)}) from exc
    if not changed:
        raise HTTPException(
            status_code=400,
            detail={"code": "password_not_changed", "message": "Password could not be changed."},
        )
    return Response(status_code=204)
