"""Chat router providing the direct-message WebSocket endpoint.

This module provides:
    - WebSocket /ws: Real-time direct messaging

Every frame, in both directions, is a JSON object ``{"event": ..., "data": ...}``.

Client -> server events:
    - set username: data is the display name (string)
    - join room: data is a legacy room token (string) or {"peer": name}
    - chat message: data is {"roomId": token, "text": ...} or {"peer": name, "text": ...}

Server -> client events:
    - joined: {roomId, peer}, sent to the joining connection
    - chat history: list of the room's most recent messages, sent to the joining connection
    - chat message: a new message, broadcast to every connection that joined the room
    - error: {error, message, event}, sent when a request is refused
"""
import json
import logging
from typing import Any, Optional, Tuple

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from dmrelay.rooms.identity import InvalidRoomToken

from .manager import ConnectionManager
from .session import Session, SessionCoordinator, SessionError

logger = logging.getLogger(__name__)

router = APIRouter()

EVENT_SET_USERNAME = "set username"
EVENT_JOIN_ROOM = "join room"
EVENT_CHAT_MESSAGE = "chat message"
EVENT_CHAT_HISTORY = "chat history"
EVENT_JOINED = "joined"
EVENT_ERROR = "error"


def _room_target(data: Any) -> Tuple[Optional[str], Optional[str]]:
    """Split a join/send payload into ``(token, peer)``."""
    if isinstance(data, str):
        return data, None
    if isinstance(data, dict):
        return data.get("roomId"), data.get("peer")
    return None, None


async def _send_error(
    manager: ConnectionManager,
    websocket: WebSocket,
    code: str,
    message: str,
    event: Optional[str] = None,
) -> None:
    await manager.send_event(websocket, EVENT_ERROR, {
        "error": code,
        "message": message,
        "event": event,
    })


async def _handle_event(
    websocket: WebSocket,
    session: Session,
    event: str,
    data: Any,
    coordinator: SessionCoordinator,
    manager: ConnectionManager,
) -> None:
    # --- Handle SET USERNAME ---
    if event == EVENT_SET_USERNAME:
        name = data.get("username") if isinstance(data, dict) else data
        coordinator.set_username(session, name)
        return

    # --- Handle JOIN ROOM ---
    if event == EVENT_JOIN_ROOM:
        token, peer = _room_target(data)
        _, room_id = coordinator.resolve_room(session, token=token, peer=peer)

        async with manager.room_lock(room_id):
            # Subscribe before the history snapshot so nothing sent after it is missed
            was_subscribed = manager.is_subscribed(websocket, room_id)
            manager.subscribe(websocket, room_id)
            try:
                result = await run_in_threadpool(coordinator.join, session, token, peer)
            except Exception:
                if not was_subscribed:
                    manager.unsubscribe(websocket, room_id)
                raise

            await manager.send_event(websocket, EVENT_JOINED, {
                "roomId": result.room_id,
                "peer": result.peer,
            })
            await manager.send_event(
                websocket, EVENT_CHAT_HISTORY, [msg.to_wire() for msg in result.history]
            )
        return

    # --- Handle CHAT MESSAGE ---
    if event == EVENT_CHAT_MESSAGE:
        if not isinstance(data, dict):
            raise InvalidRoomToken("chat message payload must be an object")
        token, peer = _room_target(data)
        _, room_id = coordinator.resolve_room(session, token=token, peer=peer)

        async with manager.room_lock(room_id):
            message = await run_in_threadpool(
                coordinator.send_message, session, data.get("text"), token, peer
            )
            logger.debug(
                f"[WS] Broadcasting message to {manager.get_room_size(message.roomId)} connections"
            )
            await manager.broadcast(EVENT_CHAT_MESSAGE, message.to_wire(), message.roomId)
        return

    await _send_error(manager, websocket, "unknown_event", f"unknown event {event!r}", event)


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for direct messaging.

    Protocol Flow:
        1. Client connects (no room yet)
        2. Client sends: {event: "set username", data: "alice"}
        3. Client sends: {event: "join room", data: "bob"}
           -> Server sends: {event: "joined", data: {roomId: "alice_bob", peer: "bob"}}
           -> Server sends: {event: "chat history", data: [...]}
        4. Client sends: {event: "chat message", data: {roomId: "bob", text: "hi"}}
           -> Server broadcasts to the room: {event: "chat message", data: {...message}}
        5. On disconnect the connection's subscriptions are dropped
    """
    coordinator: SessionCoordinator = websocket.app.state.coordinator
    manager: ConnectionManager = websocket.app.state.connection_manager

    await manager.connect(websocket)
    session = coordinator.open_session()

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await _send_error(manager, websocket, "invalid_frame", "frame is not valid JSON")
                continue

            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                await _send_error(
                    manager, websocket, "invalid_frame", "frame must be an object with an 'event' string"
                )
                continue

            event = frame["event"]
            try:
                await _handle_event(
                    websocket, session, event, frame.get("data"), coordinator, manager
                )
            except InvalidRoomToken as exc:
                logger.info(f"[WS] Refused {event!r} from {session.connection_id}: {exc}")
                await _send_error(manager, websocket, "invalid_room_token", str(exc), event)
            except SessionError as exc:
                logger.info(f"[WS] Refused {event!r} from {session.connection_id}: {exc}")
                await _send_error(manager, websocket, exc.code, str(exc), event)
            except WebSocketDisconnect:
                raise
            except Exception as exc:
                logger.error(f"[WS] Error handling {event!r}: {exc}", exc_info=True)
                await _send_error(manager, websocket, "internal_error", "request failed", event)

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
        coordinator.close_session(session)
