"""
api/routes/v1/auth.py -- Login, two-factor and self-service endpoints.

Routes:
  POST /api/v1/auth/login              -- local or directory login; full or pending-2FA cookie
  POST /api/v1/auth/login/2fa          -- TOTP check for a pending login; full cookie
  POST /api/v1/auth/logout             -- clears the full session cookie
  GET  /api/v1/auth/me                 -- current account (requires auth)
  POST /api/v1/auth/2fa/setup          -- fresh TOTP secret + otpauth:// URI (requires auth)
  POST /api/v1/auth/2fa/enable         -- verify a code, then store the secret (requires auth)
  POST /api/v1/auth/2fa/disable        -- drop the secret (requires auth)
  POST /api/v1/auth/password           -- change a local password (requires auth)
  WS   /api/v1/auth/session/ws         -- session revalidation for a live connection

Security:
  All login failures return the same 401 "bad_credentials" body -- unknown
  user, wrong password, inactive and locked accounts are indistinguishable.
  Cache-Control: no-store on every login response.
  A wrong TOTP code leaves both cookies untouched.
"""

from __future__ import annotations

import asyncio
import logging

import pyotp
from fastapi import APIRouter, Depends, HTTPException, Request, Response, WebSocket
from fastapi.responses import JSONResponse

from api.models import (
    LoginRequest,
    LoginResponse,
    LoginStatus,
    MeResponse,
    MessageResponse,
    PasswordChangeRequest,
    TwoFactorEnableRequest,
    TwoFactorLoginRequest,
    TwoFactorSetupResponse,
)
from auth.dependencies import AuthenticatedSession, get_current_account, get_current_session
from auth.exceptions import AuthenticationRejected, InvalidTwoFactorCode
from auth.login import LoginService
from auth.models import Account, AccountType, SessionScope
from auth.passwords import generate_salt, hash_password
from auth.revalidation import SessionRevalidator, SessionState
from auth.sessions import SessionManager, verify_totp
from auth.store import UserStore
from auth.tokens import CookieSessionTransport
from core.config import get_settings

logger = logging.getLogger("identitygate.api.auth")

# Close code sent when a live session is revoked (4000-4999 are application codes).
WS_SESSION_REVOKED = 4401

router = APIRouter()


def _rejected(code: str = "bad_credentials", message: str = "Invalid username or password.") -> JSONResponse:
    resp = JSONResponse(status_code=401, content={"error": {"code": code, "message": message}})
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    Accounts with two-factor enabled get a short-lived pending cookie and
    status "two_factor_required" -- unless the request comes from a trusted
    network, in which case the full session is issued straight away.
    """
    login_service: LoginService = request.app.state.login_service
    sessions: SessionManager = request.app.state.session_manager

    account = login_service.login(body.username, body.password, use_directory=body.use_directory)
    if account is None:
        return _rejected()

    remote_address = request.client.host if request.client else None
    if sessions.should_require_two_factor(account, remote_address):
        resp = JSONResponse(
            status_code=200,
            content=LoginResponse(status=LoginStatus.two_factor_required).model_dump(mode="json"),
        )
        sessions.issue_pending_session(resp, account)
    else:
        resp = JSONResponse(
            status_code=200,
            content=LoginResponse(
                status=LoginStatus.authenticated,
                account_id=account.id,
                username=account.username,
            ).model_dump(mode="json"),
        )
        sessions.issue_full_session(resp, account, persistent=body.remember_me)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/login/2fa", response_model=LoginResponse)
def login_two_factor(request: Request, response: Response, body: TwoFactorLoginRequest) -> LoginResponse:
    """Finish a pending login with a TOTP code.

    Cookies written to `response` are only sent on success. Raising
    HTTPException discards them, so a failed attempt changes no session state.
    """
    sessions: SessionManager = request.app.state.session_manager

    account_id = sessions.pending_account_id(request.cookies)
    if account_id is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "no_pending_login", "message": "No pending login. Sign in again."},
        )
    try:
        account = sessions.complete_pending_session(response, account_id, body.code, persistent=body.remember_me)
    except InvalidTwoFactorCode as exc:
        raise HTTPException(status_code=401, detail={"code": "invalid_code", "message": str(exc)}) from exc
    except AuthenticationRejected as exc:
        raise HTTPException(status_code=401, detail={"code": "bad_credentials", "message": str(exc)}) from exc

    response.headers["Cache-Control"] = "no-store"
    return LoginResponse(status=LoginStatus.authenticated, account_id=account.id, username=account.username)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Clear the full session cookie. A pending two-factor cookie is left alone."""
    sessions: SessionManager = request.app.state.session_manager
    resp = JSONResponse(content={"message": "Logged out."})
    sessions.logout(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(session: AuthenticatedSession = Depends(get_current_session)) -> MeResponse:
    """Return identity information for the currently authenticated account."""
    account = session.account
    return MeResponse(
        account_id=account.id,
        username=account.username,
        display_name=account.display_name,
        email=account.email,
        account_type=account.account_type.name.lower(),
        two_factor_enabled=account.two_factor_enabled,
        roles=session.claims.roles,
    )


@router.post("/auth/2fa/setup", response_model=TwoFactorSetupResponse)
def two_factor_setup(account: Account = Depends(get_current_account)) -> TwoFactorSetupResponse:
    """Generate a secret for the authenticator app. Nothing is stored until /2fa/enable."""
    if account.two_factor_enabled:
        raise HTTPException(
            status_code=409,
            detail={"code": "already_enabled", "message": "Two-factor authentication is already enabled."},
        )
    secret = pyotp.random_base32()
    uri = pyotp.TOTP(secret).provisioning_uri(name=account.username, issuer_name=get_settings().totp_issuer)
    return TwoFactorSetupResponse(secret=secret, provisioning_uri=uri)


@router.post("/auth/2fa/enable", response_model=MessageResponse)
def two_factor_enable(
    request: Request,
    body: TwoFactorEnableRequest,
    account: Account = Depends(get_current_account),
) -> MessageResponse:
    """Store the secret once the user proves their app produces valid codes for it."""
    user_store: UserStore = request.app.state.user_store
    if account.two_factor_enabled:
        raise HTTPException(
            status_code=409,
            detail={"code": "already_enabled", "message": "Two-factor authentication is already enabled."},
        )
    if not verify_totp(body.secret, body.code):
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_code", "message": "Invalid or expired code."},
        )
    account.two_factor_secret = body.secret
    account.two_factor_enabled = True
    user_store.set_two_factor(account)
    logger.info("Two-factor enabled for account id=%s", account.id)
    return MessageResponse(message="Two-factor authentication enabled.")


@router.post("/auth/2fa/disable", response_model=MessageResponse)
def two_factor_disable(request: Request, account: Account = Depends(get_current_account)) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    account.two_factor_enabled = False
    account.two_factor_secret = None
    user_store.set_two_factor(account)
    logger.info("Two-factor disabled for account id=%s", account.id)
    return MessageResponse(message="Two-factor authentication disabled.")


@router.post("/auth/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    account: Account = Depends(get_current_account),
) -> MessageResponse:
    """Change a local account's password. Directory passwords are managed in the directory."""
    user_store: UserStore = request.app.state.user_store
    login_service: LoginService = request.app.state.login_service

    if account.account_type is not AccountType.LOCAL:
        raise HTTPException(
            status_code=400,
            detail={"code": "directory_account", "message": "Directory passwords cannot be changed here."},
        )
    if login_service.local_login(account.username, body.current_password) is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "wrong_password", "message": "Current password is incorrect."},
        )
    account.salt = generate_salt()
    account.password_hash = hash_password(body.new_password, account.salt)
    user_store.set_password(account)
    logger.info("Password changed for account id=%s", account.id)
    return MessageResponse(message="Password changed.")


# ---------------------------------------------------------------------------
# Live session revalidation
# ---------------------------------------------------------------------------


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/auth/session/ws")
async def session_socket(websocket: WebSocket) -> None:
    """Keep a connection open for as long as its session stays valid.

    Sends {"state": "active"} after the initial check, then re-checks every
    REVALIDATION_INTERVAL_SECONDS. On revocation sends {"state": "revoked"}
    and closes with code 4401. A client disconnect cancels the checks.
    """
    transport: CookieSessionTransport = websocket.app.state.session_transport
    user_store: UserStore = websocket.app.state.user_store

    claims = transport.read_claims(websocket.cookies, SessionScope.FULL)
    revalidator = SessionRevalidator(user_store, claims, interval=get_settings().revalidation_interval_seconds)

    await websocket.accept()
    state = await revalidator.initial_state()
    if state is SessionState.REVOKED:
        await websocket.send_json({"state": SessionState.REVOKED.value})
        await websocket.close(code=WS_SESSION_REVOKED)
        return
    await websocket.send_json({"state": SessionState.ACTIVE.value})

    async def on_revoked() -> None:
        await websocket.send_json({"state": SessionState.REVOKED.value})
        await websocket.close(code=WS_SESSION_REVOKED)

    checks = asyncio.create_task(revalidator.run(on_revoked))
    watcher = asyncio.create_task(_wait_for_disconnect(websocket))
    done, pending = await asyncio.wait({checks, watcher}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    if checks in done:
        # Surface errors raised inside the revalidation loop.
        checks.result()
    else:
        logger.debug("Session socket closed by client; revalidation stopped")
