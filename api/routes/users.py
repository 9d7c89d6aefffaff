"""
api/routes/users.py -- User management REST endpoints.

Routes:
  POST   /api/users        -- create user with roles (Admin)
  GET    /api/users        -- list users with resolved role names (authenticated)
  GET    /api/users/{id}   -- single user (authenticated)
  PUT    /api/users/{id}   -- update fields and optionally sync roles (Admin)
  DELETE /api/users/{id}   -- delete user and its assignments (Admin)

Status mapping:
  Outcome.NOT_FOUND -> 404
  Outcome.CONFLICT  -> 409 (retryable; nothing was written)
  ValidationError   -> 400
  DuplicateEmailError / DuplicateUsernameError -> 400 on create (documented
      contract), 409 on update
  ConcurrencyConflict on create -> 400 creation_failed (the batch was rolled
      back, e.g. a requested role vanished mid-request; nothing was written)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import UserCreate, UserResponse, UserUpdateRequest
from auth.dependencies import get_current_identity, require_admin
from auth.errors import ConcurrencyConflict, DuplicateEmailError, DuplicateUsernameError, Outcome, ValidationError
from auth.models import Identity, UserUpdate
from auth.service import IdentityService

# Auth policy:
# - GET    /api/users, /api/users/{id}: requires auth (get_current_identity)
# - POST   /api/users:                  requires Admin (require_admin)
# - PUT    /api/users/{id}:             requires Admin (require_admin)
# - DELETE /api/users/{id}:             requires Admin (require_admin)
router = APIRouter()

_NOT_FOUND = {"code": "not_found", "message": "User not found."}
_CONFLICT = {"code": "conflict", "message": "The user was modified concurrently. Retry the request."}


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    response: Response,
    body: UserCreate,
    identity: Identity = Depends(require_admin),
) -> UserResponse:
    """Create a user and assign the requested roles. Unknown role names are ignored."""
    if not body.email or not body.email.strip() or not body.password or not body.password.strip():
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "Email and password are required."},
        )

    service: IdentityService = request.app.state.identity_service
    try:
        created = service.create_user(body.email, body.password, body.roles)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"code": "validation_error", "message": str(exc)}) from exc
    except DuplicateEmailError as exc:
        raise HTTPException(status_code=400, detail={"code": "duplicate_email", "message": str(exc)}) from exc
    except DuplicateUsernameError as exc:
        raise HTTPException(status_code=400, detail={"code": "duplicate_username", "message": str(exc)}) from exc
    except ConcurrencyConflict as exc:
        raise HTTPException(status_code=400, detail={"code": "creation_failed", "message": str(exc)}) from exc

    response.headers["Location"] = str(request.url_for("get_user", user_id=created.id))
    return UserResponse.from_user(created)


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> list[UserResponse]:
    service: IdentityService = request.app.state.identity_service
    return [UserResponse.from_user(u) for u in service.list_users()]


@router.get("/users/{user_id}", response_model=UserResponse, name="get_user")
def get_user(
    request: Request,
    user_id: int,
    identity: Identity = Depends(get_current_identity),
) -> UserResponse:
    service: IdentityService = request.app.state.identity_service
    user = service.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail=_NOT_FOUND)
    return UserResponse.from_user(user)


@router.put("/users/{user_id}", status_code=204)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdateRequest,
    identity: Identity = Depends(require_admin),
) -> Response:
    """Replace a user's fields and, when roles is present, reconcile its roles.

    The id in the body must match the route. The password is re-hashed on
    every update. Field changes and the role delta commit together.
    """
    if body.id != user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "id_mismatch", "message": "Id in route does not match id in body."},
        )
    if not body.email or not body.email.strip() or not body.password:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "Email and password are required."},
        )

    service: IdentityService = request.app.state.identity_service
    update = UserUpdate(
        id=user_id,
        email=body.email,
        password=body.password,
        username=body.username,
        is_active=body.is_active,
        roles=body.roles,
    )
    try:
        outcome = service.apply_update(update)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"code": "validation_error", "message": str(exc)}) from exc
    except DuplicateEmailError as exc:
        raise HTTPException(status_code=409, detail={"code": "duplicate_email", "message": str(exc)}) from exc
    except DuplicateUsernameError as exc:
        raise HTTPException(status_code=409, detail={"code": "duplicate_username", "message": str(exc)}) from exc

    if outcome is Outcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail=_NOT_FOUND)
    if outcome is Outcome.CONFLICT:
        raise HTTPException(status_code=409, detail=_CONFLICT)
    return Response(status_code=204)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    identity: Identity = Depends(require_admin),
) -> Response:
    service: IdentityService = request.app.state.identity_service
    outcome = service.remove_user(user_id)
    if outcome is Outcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail=_NOT_FOUND)
    if outcome is Outcome.CONFLICT:
        raise HTTPException(status_code=409, detail=_CONFLICT)
    return Response(status_code=204)
