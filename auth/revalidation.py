"""
auth/revalidation.py -- Periodic session liveness checks.

A signed cookie stays cryptographically valid until it expires, even if an
admin deactivates the account behind it five minutes after login. Long-lived
connections therefore re-check the backing account on a fixed interval:

    Active --(claim missing / account missing / account inactive)--> Revoked

Revoked is terminal for that connection. Reactivating the account later does
not bring the connection back -- the user must log in again.

The initial state is evaluated once, eagerly, and cached for the lifetime of
the revalidator; ticks only start after that.

Stores are synchronous (SQLAlchemy Core), so lookups are pushed to a worker
thread with asyncio.to_thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from auth.models import Account, SessionClaims
from auth.sessions import parse_account_id
from auth.store import UserStore

logger = logging.getLogger("identitygate.auth.revalidation")


class SessionState(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


def resolve_session_account(store: UserStore, claims: SessionClaims | None) -> Account | None:
    """Return the live account behind claims, or None if the session is no longer valid.

    This is the revalidation rule shared by per-request auth and the timed
    ticks: a parseable account id claim whose account exists and is active.
    """
    account_id = parse_account_id(claims)
    if account_id is None:
        return None
    account = store.get_by_id(account_id)
    if account is None:
        logger.info("Session for account id=%s revoked: account no longer exists", account_id)
        return None
    if not account.is_active:
        logger.info("Session for account id=%s revoked: account deactivated", account_id)
        return None
    return account


class SessionRevalidator:
    """Revalidation state machine for one connection.

    Usage:
        revalidator = SessionRevalidator(store, claims, interval=5.0)
        if await revalidator.initial_state() is SessionState.ACTIVE:
            task = asyncio.create_task(revalidator.run(on_revoked))
        ...
        task.cancel()   # stops checking; does not revoke
    """

    def __init__(self, store: UserStore, claims: SessionClaims | None, interval: float = 5.0) -> None:
        self._store = store
        self._claims = claims
        self.interval = interval
        self._initial: SessionState | None = None
        self._state: SessionState | None = None

    @property
    def state(self) -> SessionState | None:
        """Current state, or None before initial_state() has run."""
        return self._state

    async def validate(self) -> bool:
        """One tick: True if the session may stay active."""
        account = await asyncio.to_thread(resolve_session_account, self._store, self._claims)
        return account is not None

    async def initial_state(self) -> SessionState:
        """Evaluate the session once and cache the answer."""
        if self._initial is None:
            self._initial = SessionState.ACTIVE if await self.validate() else SessionState.REVOKED
            self._state = self._initial
        return self._initial

    async def tick(self) -> SessionState:
        """Re-check an active session. A revoked session never re-checks."""
        if self._state is None:
            return await self.initial_state()
        if self._state is SessionState.ACTIVE and not await self.validate():
            self._state = SessionState.REVOKED
        return self._state

    async def run(self, on_revoked: Callable[[], Awaitable[None]] | None = None) -> SessionState:
        """Tick every `interval` seconds until the session is revoked.

        Calls on_revoked once on the transition to Revoked and returns.
        Cancelling the task stops revalidation and leaves the state as is.
        """
        state = await self.initial_state()
        while state is SessionState.ACTIVE:
            await asyncio.sleep(self.interval)
            state = await self.tick()
        if on_revoked is not None:
            await on_revoked()
        return state
