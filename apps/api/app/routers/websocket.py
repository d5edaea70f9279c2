"""
WebSocket router for realtime conversation events.

Provides a WebSocket endpoint that:
1. Authenticates the account via JWT cookie (or ?token=)
2. Resolves the org member from the org shortcode in the path
3. Subscribes the connection to the member's events and the channels of
   every space the member can access
"""

import jwt
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from app.core.deps import COOKIE_NAME, resolve_org_context
from app.core.errors import ServiceError
from app.core.org_cache import OrgContext, OrgShortcodeCache
from app.core.security import account_id_from_token
from app.core.websocket import manager, space_channel
from app.db.session import SessionLocal
from app.services import space_service

router = APIRouter(tags=["WebSocket"])


def _subscription(
    cache: OrgShortcodeCache, org_shortcode: str, account_id: int
) -> tuple[OrgContext, list[str]]:
    db = SessionLocal()
    try:
        org = resolve_org_context(db, cache=cache, org_shortcode=org_shortcode, account_id=account_id)
        spaces = space_service.list_accessible_spaces(
            db, org_id=org.org_id, org_member_id=org.member_id
        )
        return org, [space_channel(space.public_id) for space in spaces]
    finally:
        db.close()


@router.websocket("/{org_shortcode}/realtime")
async def websocket_realtime(
    websocket: WebSocket,
    org_shortcode: str,
    token: str | None = Query(None),
):
    """
    WebSocket endpoint for conversation events.

    The server pushes ``{"event": ..., "data": ...}`` messages; a client
    ``ping`` is answered with ``pong``.
    """
    raw_token = token or websocket.cookies.get(COOKIE_NAME)
    if not raw_token:
        await websocket.close(code=4001, reason="Authentication required")
        return
    try:
        account_id = account_id_from_token(raw_token)
    except jwt.InvalidTokenError:
        await websocket.close(code=4001, reason="Invalid token")
        return

    try:
        org, channels = await run_in_threadpool(
            _subscription, websocket.app.state.org_cache, org_shortcode, account_id
        )
    except ServiceError:
        await websocket.close(code=4003, reason="Not a member of this organization")
        return

    await manager.connect(websocket, org.member_public_id, channels)

    try:
        # Keep connection alive, handle incoming messages (heartbeat/pings)
        while True:
            try:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
            except WebSocketDisconnect:
                break
    finally:
        await manager.disconnect(websocket, org.member_public_id)
