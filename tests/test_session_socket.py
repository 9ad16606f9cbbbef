"""
tests/test_session_socket.py -- Integration tests for the revalidation WebSocket.

REVALIDATION_INTERVAL_SECONDS is set to 0.05 in conftest, so a deactivation
is picked up within a few ticks.

Coverage:
  - Active session: {"state": "active"} on connect
  - Deactivating the account mid-connection: {"state": "revoked"}, close 4401
  - No / invalid session cookie: revoked immediately
"""

from __future__ import annotations

import pytest
from starlette.websockets import WebSocketDisconnect

from api.routes.v1.auth import WS_SESSION_REVOKED
from auth.models import SessionClaims, SessionScope
from conftest import ApiContext, make_local_account

WS = "/api/v1/auth/session/ws"


def _cookie(api: ApiContext, account_id: int) -> dict[str, str]:
    token = api.services.transport.encode(SessionScope.FULL, SessionClaims(account_id=str(account_id)))
    return {"cookie": f"session={token}"}


def test_deactivation_revokes_live_connection(api: ApiContext) -> None:
    account = make_local_account(api.services.user_store, "ws_alice", "hunter22")

    with api.client.websocket_connect(WS, headers=_cookie(api, account.id)) as ws:
        assert ws.receive_json() == {"state": "active"}

        assert api.services.user_store.set_active(account.id, False) is True

        assert ws.receive_json() == {"state": "revoked"}
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
        assert exc_info.value.code == WS_SESSION_REVOKED


def test_active_connection_can_be_closed_by_client(api: ApiContext) -> None:
    account = make_local_account(api.services.user_store, "ws_bob", "hunter22")
    with api.client.websocket_connect(WS, headers=_cookie(api, account.id)) as ws:
        assert ws.receive_json() == {"state": "active"}
    # Leaving the block disconnects; the account is untouched.
    assert api.services.user_store.get_by_id(account.id).is_active is True


def test_missing_session_is_revoked_immediately(api: ApiContext) -> None:
    with api.client.websocket_connect(WS) as ws:
        assert ws.receive_json() == {"state": "revoked"}
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
        assert exc_info.value.code == WS_SESSION_REVOKED


def test_unknown_account_is_revoked_immediately(api: ApiContext) -> None:
    with api.client.websocket_connect(WS, headers=_cookie(api, 424242)) as ws:
        assert ws.receive_json() == {"state": "revoked"}
