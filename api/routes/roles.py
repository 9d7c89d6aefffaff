"""
api/routes/roles.py -- Read-only role listing.

Roles are reference data created by the seeder. The UI reads this list to
render role pickers; there are no role write endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import RoleResponse
from auth.dependencies import get_current_identity
from auth.models import Identity
from auth.service import IdentityService

router = APIRouter()


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> list[RoleResponse]:
    service: IdentityService = request.app.state.identity_service
    return [RoleResponse(id=r.id, name=r.name) for r in service.list_roles()]
