"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - GET /rooms: Current room names
    - GET /rooms/{room}/users: Usernames currently in a room
    - WebSocket /ws: Realtime room chat

Connecting requires the bearer token issued by POST /login, passed either as
the ``token`` query parameter or in an ``Authorization: Bearer`` header. A
missing or invalid token closes the socket with 1008 (policy violation)
before any room state is touched.

Protocol Flow:
    1. Client connects with a token → placed in the default room
       → joined-room, room-users, clear-messages, client-total, room-history
    2. Client sends {event: "join-room", data: {name}} to switch rooms
    3. Client sends {event: "send-message", data: {content}}
       → every member of its room receives chat-message
    4. Client sends {event: "send-feedback", data: {payload}}
       → every other member of its room receives feedback
    5. Client sends {event: "delete-room", data: {name}}
       → members moved to the default room, room-deleted broadcast
    6. On disconnect → room-users / user-left to the vacated room, client-total
"""
import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect

from roomcast.auth.service import AuthRejection, get_token_service

from . import events
from .broadcast import BroadcastRouter
from .coordinator import RoomCoordinator
from .dispatch import dispatch

logger = logging.getLogger(__name__)

router = APIRouter()

POLICY_VIOLATION = 1008


def _bearer_token(websocket: WebSocket, token: Optional[str]) -> Optional[str]:
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def _coordinator(request: Request) -> RoomCoordinator:
    return request.app.state.coordinator


@router.get("/rooms")
async def list_rooms(request: Request) -> dict:
    """List current room names (default room first)."""
    return {"rooms": _coordinator(request).list_rooms()}


@router.get("/rooms/{room}/users")
async def room_users(room: str, request: Request) -> dict:
    """List the usernames currently in a room."""
    coordinator = _coordinator(request)
    if room not in coordinator.list_rooms():
        raise HTTPException(status_code=404, detail=f"Room {room} not found")
    return {"room": room, "users": coordinator.roster(room)}


@router.websocket("/ws")
async def realtime_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Bearer token from POST /login"),
) -> None:
    """WebSocket endpoint for realtime room chat.

    Args:
        websocket: The WebSocket connection.
        token: Bearer token (alternatively sent as an Authorization header).
    """
    try:
        username = get_token_service().verify(_bearer_token(websocket, token))
    except AuthRejection as e:
        logger.info(f"[WS] Connection rejected: {e}")
        await websocket.close(code=POLICY_VIOLATION)
        return

    coordinator: RoomCoordinator = websocket.app.state.coordinator
    broadcaster: BroadcastRouter = websocket.app.state.broadcaster

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    logger.info(f"[WS] Connection accepted for {username} ({connection_id})")

    await coordinator.connect(connection_id, username, websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                event = events.parse_inbound(json.loads(raw))
            except ValueError:
                coordinator.send_error(connection_id, "Invalid frame: not JSON")
                continue
            except events.ProtocolViolation as e:
                logger.info(f"[WS] {username} sent an invalid frame: {e}")
                coordinator.send_error(connection_id, str(e))
                continue

            logger.debug("[WS] %s received: event=%s", connection_id, event.event)
            await dispatch(coordinator, broadcaster, connection_id, event)

    except WebSocketDisconnect:
        logger.info(f"[WS] {username} disconnected ({connection_id})")
    except Exception as e:
        logger.error(f"[WS] Error on connection {connection_id}: {e}", exc_info=True)
    finally:
        await coordinator.disconnect(connection_id)
