"""
api/routes/v1/accounts.py -- Account administration (ADMIN role only).

Routes:
  POST  /api/v1/accounts         -- create a local account
  GET   /api/v1/accounts         -- list accounts
  GET   /api/v1/accounts/{id}    -- one account
  PATCH /api/v1/accounts/{id}    -- activate/deactivate, lockout, roles

Directory accounts are never created here; they are provisioned on first
directory login. Deactivation is the only way to remove access -- accounts
are never deleted. A deactivated account's live sessions are revoked at the
next revalidation tick.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import AccountCreate, AccountPatch, AccountResponse
from auth.dependencies import AuthenticatedSession, require_admin
from auth.models import Account, AccountType, RoleAssignment
from auth.passwords import generate_salt, hash_password
from auth.roles import RoleCache
from auth.store import UserStore

logger = logging.getLogger("identitygate.api.accounts")

router = APIRouter()


def _role_assignments(role_cache: RoleCache, role_ids: list[int]) -> list[RoleAssignment]:
    unknown = [rid for rid in role_ids if role_cache.find_by_id(rid) is None]
    if unknown:
        raise HTTPException(
            status_code=400,
            detail={"code": "unknown_role", "message": f"Unknown role ids: {unknown}"},
        )
    return [RoleAssignment(role_id=rid, is_active=True) for rid in dict.fromkeys(role_ids)]


def _get_or_404(user_store: UserStore, account_id: int) -> Account:
    account = user_store.get_by_id(account_id)
    if account is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Account not found."},
        )
    return account


@router.post("/accounts", response_model=AccountResponse, status_code=201)
def create_account(
    request: Request,
    body: AccountCreate,
    session: AuthenticatedSession = Depends(require_admin),
) -> AccountResponse:
    """Create an active local account with a salted password hash."""
    user_store: UserStore = request.app.state.user_store
    role_cache: RoleCache = request.app.state.role_cache

    salt = generate_salt()
    account = Account(
        username=body.username,
        display_name=body.display_name,
        email=body.email,
        account_type=AccountType.LOCAL,
        salt=salt,
        password_hash=hash_password(body.password, salt),
        is_active=True,
        lockout_enabled=True,
        roles=_role_assignments(role_cache, body.role_ids),
    )
    try:
        user_store.create_account(account)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "An account with that username already exists."},
        ) from exc

    logger.info("Account %s (id=%s) created by id=%s", account.username, account.id, session.account.id)
    return AccountResponse.from_account(_get_or_404(user_store, account.id))


@router.get("/accounts", response_model=list[AccountResponse])
def list_accounts(
    request: Request,
    session: AuthenticatedSession = Depends(require_admin),
) -> list[AccountResponse]:
    user_store: UserStore = request.app.state.user_store
    return [AccountResponse.from_account(a) for a in user_store.list_accounts()]


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    request: Request,
    account_id: int,
    session: AuthenticatedSession = Depends(require_admin),
) -> AccountResponse:
    return AccountResponse.from_account(_get_or_404(request.app.state.user_store, account_id))


@router.patch("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    request: Request,
    account_id: int,
    body: AccountPatch,
    session: AuthenticatedSession = Depends(require_admin),
) -> AccountResponse:
    """Update active flag, lockout and (local accounts only) role set.

    Directory accounts get their roles from directory groups on every login,
    so editing them here would be overwritten -- rejected instead.
    An admin cannot deactivate their own account.
    """
    user_store: UserStore = request.app.state.user_store
    role_cache: RoleCache = request.app.state.role_cache

    account = _get_or_404(user_store, account_id)

    if body.is_active is False and account.id == session.account.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
        )
    if body.role_ids is not None and account.account_type is AccountType.DIRECTORY:
        raise HTTPException(
            status_code=400,
            detail={"code": "directory_roles", "message": "Directory account roles come from directory groups."},
        )

    if body.is_active is not None:
        account.is_active = body.is_active
    if body.clear_lockout:
        account.lockout_end = None
    elif body.lockout_end is not None:
        account.lockout_end = body.lockout_end
    if body.role_ids is not None:
        account.roles = _role_assignments(role_cache, body.role_ids)

    user_store.update_account(account)
    logger.info("Account id=%s updated by id=%s", account.id, session.account.id)
    return AccountResponse.from_account(_get_or_404(user_store, account.id))
