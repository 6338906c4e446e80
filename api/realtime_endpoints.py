"""
Real-time Portfolio Channel.

WebSocket endpoint `/ws/portfolio` through which editors and public viewers
receive saved portfolio documents as they happen.

Protocol (JSON text frames, `{"event": <name>, "data": <payload>}`):
- server → `connected` `{connectionId}` right after the handshake.
- client `joinPortfolioRoom` with `data` = username (or `{"username"}`) →
  server acks `joinedPortfolioRoom` `{room}`. Joining twice is harmless.
- client `portfolioUpdated` `{username, portfolio}` → relayed to the room only
  when the socket's own credentials (session cookie or `Authorization` header
  sent with the handshake) belong to that username; otherwise the client gets
  a `warning`.
- client `ping` → server `pong`.
- server → `portfolioUpdated` `{username, portfolio}` after every successful
  save of that username's document.

Anonymous sockets are allowed: public viewers only need to join rooms.
Problems with one message are answered with a `warning` event and never close
the socket or affect other connections.
"""

import json
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from core.exceptions import PortfolioAPIException
from core.logging_config import get_logger, set_correlation_id
from core.models import UserPublic
from services.broadcast_service import (
    PORTFOLIO_UPDATED,
    UpdateBroadcaster,
    portfolio_updated_message,
    room_name,
)

logger = get_logger(__name__)
websocket_router = APIRouter(tags=["Real-time"])

JOIN_ROOM = "joinPortfolioRoom"
JOINED_ROOM = "joinedPortfolioRoom"


def _event(name: str, data: Any = None) -> Dict[str, Any]:
    return {"event": name, "data": data}


def _warning(message: str) -> Dict[str, Any]:
    return _event("warning", {"message": message})


async def _identify(websocket: WebSocket) -> Optional[UserPublic]:
    """Owner identity from the handshake credentials, if any"""
    authenticator = websocket.app.state.authenticator
    if authenticator.extract_token(websocket) is None:
        return None
    try:
        return await authenticator(websocket)
    except PortfolioAPIException as e:
        logger.info(f"WebSocket handshake credentials rejected: {e.error_code}")
        return None


async def _handle_message(
    websocket: WebSocket,
    broadcaster: UpdateBroadcaster,
    connection_id: str,
    owner: Optional[UserPublic],
    message: Dict[str, Any],
) -> None:
    event = message.get("event")
    data = message.get("data")

    if event == JOIN_ROOM:
        username = data.get("username") if isinstance(data, dict) else data
        if not isinstance(username, str) or not username.strip():
            await websocket.send_json(_warning("joinPortfolioRoom requires a username"))
            return
        room = broadcaster.join_room(connection_id, username)
        await websocket.send_json(_event(JOINED_ROOM, {"room": room}))

    elif event == PORTFOLIO_UPDATED:
        username = data.get("username") if isinstance(data, dict) else None
        portfolio = data.get("portfolio") if isinstance(data, dict) else None
        if not isinstance(username, str) or not isinstance(portfolio, dict):
            await websocket.send_json(
                _warning("portfolioUpdated requires username and portfolio")
            )
            return
        if owner is None or owner.username != room_name(username):
            logger.warning(
                f"Connection {connection_id} tried to publish to room {room_name(username)}"
            )
            await websocket.send_json(
                _warning("Only the portfolio owner can publish updates")
            )
            return
        await broadcaster.publish(username, portfolio_updated_message(username, portfolio))

    elif event == "ping":
        await websocket.send_json(_event("pong"))

    else:
        await websocket.send_json(_warning(f"Unknown event: {event}"))


@websocket_router.websocket("/ws/portfolio")
async def portfolio_updates(websocket: WebSocket):
    """Room subscription channel for live portfolio updates"""
    broadcaster: UpdateBroadcaster = websocket.app.state.broadcaster
    connection_id = str(uuid.uuid4())
    set_correlation_id(connection_id)

    owner = await _identify(websocket)
    await websocket.accept()

    broadcaster.register(connection_id, websocket.send_json)
    logger.info(
        f"WebSocket connected: {connection_id}"
        + (f" as {owner.username}" if owner else " (anonymous)")
    )

    try:
        await websocket.send_json(_event("connected", {"connectionId": connection_id}))

        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))

            raw = frame.get("text")
            if raw is None:
                await websocket.send_json(_warning("Messages must be JSON text"))
                continue

            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json(_warning("Messages must be JSON"))
                continue

            if not isinstance(message, dict):
                await websocket.send_json(_warning("Messages must be JSON objects"))
                continue

            try:
                await _handle_message(websocket, broadcaster, connection_id, owner, message)
            except PortfolioAPIException as e:
                logger.warning(f"WebSocket message from {connection_id} failed: {e.message}")
                await websocket.send_json(_warning(e.message))

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {connection_id}")
    finally:
        broadcaster.disconnect(connection_id)
