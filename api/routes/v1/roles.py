"""
api/routes/v1/roles.py -- Role administration (ADMIN role only).

Routes:
  GET    /api/v1/roles          -- list roles (served from the role cache)
  POST   /api/v1/roles          -- create a role
  PATCH  /api/v1/roles/{id}     -- rename / relink to a directory group
  DELETE /api/v1/roles/{id}     -- delete a role and its assignments

Every write goes to the RoleStore first and then to the RoleCache
(upsert/remove), so login-time group mapping and claim building see the
change immediately without a reload.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import RoleCreate, RolePatch, RoleResponse
from auth.dependencies import AuthenticatedSession, require_admin
from auth.models import Role
from auth.roles import RoleCache
from auth.store import RoleStore

logger = logging.getLogger("identitygate.api.roles")

router = APIRouter()


def normalize_role_name(name: str) -> str:
    return name.strip().upper()


def _to_response(role: Role) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        normalized_name=role.normalized_name,
        directory_group_cn=role.directory_group_cn,
    )


def _conflict(exc: IntegrityError) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"code": "conflict", "message": "A role with that name already exists."},
    )


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request, session: AuthenticatedSession = Depends(require_admin)) -> list[RoleResponse]:
    role_cache: RoleCache = request.app.state.role_cache
    return [_to_response(r) for r in role_cache.all_roles()]


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    session: AuthenticatedSession = Depends(require_admin),
) -> RoleResponse:
    role_store: RoleStore = request.app.state.role_store
    role_cache: RoleCache = request.app.state.role_cache

    role = Role(
        name=body.name,
        normalized_name=normalize_role_name(body.name),
        directory_group_cn=body.directory_group_cn,
    )
    try:
        role_store.create_role(role)
    except IntegrityError as exc:
        raise _conflict(exc) from exc
    role_cache.upsert(role)
    logger.info("Role %s (id=%s) created by id=%s", role.normalized_name, role.id, session.account.id)
    return _to_response(role)


@router.patch("/roles/{role_id}", response_model=RoleResponse)
def update_role(
    request: Request,
    role_id: int,
    body: RolePatch,
    session: AuthenticatedSession = Depends(require_admin),
) -> RoleResponse:
    role_store: RoleStore = request.app.state.role_store
    role_cache: RoleCache = request.app.state.role_cache

    role = role_store.get_role(role_id)
    if role is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Role not found."})
    if body.name is not None:
        role.name = body.name
        role.normalized_name = normalize_role_name(body.name)
    if body.directory_group_cn is not None:
        role.directory_group_cn = body.directory_group_cn
    try:
        role_store.update_role(role)
    except IntegrityError as exc:
        raise _conflict(exc) from exc
    role_cache.upsert(role)
    return _to_response(role)


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(
    request: Request,
    role_id: int,
    session: AuthenticatedSession = Depends(require_admin),
) -> Response:
    role_store: RoleStore = request.app.state.role_store
    role_cache: RoleCache = request.app.state.role_cache

    if not role_store.delete_role(role_id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Role not found."})
    role_cache.remove(role_id)
    logger.info("Role id=%s deleted by id=%s", role_id, session.account.id)
    return Response(status_code=204)
