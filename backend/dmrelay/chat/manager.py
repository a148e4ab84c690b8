"""WebSocket connection manager for direct-message rooms.

Tracks which connections are subscribed to which rooms and delivers events
to them. It holds no message state; message logs live in the ``RoomStore``.

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.

Ordering:
    Each room has an asyncio lock. Holding it across a store write and the
    broadcast that follows means every subscriber sees messages in stored
    order, and a join that holds it gets its history before any live message.

Performance Notes:
    - Broadcasting uses asyncio.gather() for concurrent message delivery
    - Failed connections are automatically removed during broadcast
"""
import asyncio
import logging
from typing import Any, Dict, List, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def make_event(event: str, data: Any) -> dict:
    """Build a server -> client frame."""
    return {"event": event, "data": data}


class ConnectionManager:
    """Room subscriptions and event delivery for live WebSocket connections."""

    def __init__(self) -> None:
        # room_id -> list of subscribed WebSocket connections
        self.active_connections: Dict[str, List[WebSocket]] = {}

        # websocket -> room ids it is subscribed to, for disconnect handling
        self.connection_rooms: Dict[WebSocket, Set[str]] = {}

        # room_id -> lock ordering writes and broadcasts in that room
        self._room_locks: Dict[str, asyncio.Lock] = {}

    def room_lock(self, room_id: str) -> asyncio.Lock:
        """Return the lock that serialises delivery in a room."""
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = self._room_locks[room_id] = asyncio.Lock()
        return lock

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a WebSocket connection; it starts with no subscriptions."""
        await websocket.accept()
        self.connection_rooms[websocket] = set()

    def subscribe(self, websocket: WebSocket, room_id: str) -> None:
        """Subscribe a connection to a room's broadcasts (idempotent)."""
        connections = self.active_connections.setdefault(room_id, [])
        if websocket not in connections:
            connections.append(websocket)
        self.connection_rooms.setdefault(websocket, set()).add(room_id)

    def is_subscribed(self, websocket: WebSocket, room_id: str) -> bool:
        return room_id in self.connection_rooms.get(websocket, ())

    def unsubscribe(self, websocket: WebSocket, room_id: str) -> None:
        """Remove one room subscription of a connection."""
        self.connection_rooms.get(websocket, set()).discard(room_id)
        connections = self.active_connections.get(room_id)
        if connections and websocket in connections:
            connections.remove(websocket)
        if connections is not None and not connections:
            del self.active_connections[room_id]

    def disconnect(self, websocket: WebSocket) -> Set[str]:
        """Drop a connection and all of its subscriptions.

        Returns:
            The room ids the connection was subscribed to.
        """
        rooms = self.connection_rooms.pop(websocket, set())
        for room_id in rooms:
            self.unsubscribe(websocket, room_id)
        return rooms

    async def send_event(self, websocket: WebSocket, event: str, data: Any) -> bool:
        """Send one event to a single connection."""
        return await self._safe_send(websocket, make_event(event, data))

    async def broadcast(self, event: str, data: Any, room_id: str) -> None:
        """Broadcast an event to all subscribers of a room concurrently.

        Connections whose send fails are unsubscribed from the room.
        """
        connections = list(self.active_connections.get(room_id, []))
        if not connections:
            return

        message = make_event(event, data)
        results = await asyncio.gather(
            *[self._safe_send(conn, message) for conn in connections],
            return_exceptions=True
        )

        failed_connections = [
            conn for conn, success in zip(connections, results)
            if success is not True
        ]
        self._cleanup_connections(room_id, failed_connections)

    async def _safe_send(self, connection: WebSocket, message: dict) -> bool:
        """Send a message to a WebSocket connection with error handling.

        Returns:
            True if successful, False if connection failed.
        """
        try:
            await connection.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False

    def _cleanup_connections(
        self, room_id: str, failed_connections: List[WebSocket]
    ) -> None:
        if not failed_connections or room_id not in self.active_connections:
            return

        for conn in failed_connections:
            if conn in self.active_connections[room_id]:
                self.active_connections[room_id].remove(conn)
                self.connection_rooms.get(conn, set()).discard(room_id)
                logger.debug(f"Removed dead connection from room {room_id}")

    def get_room_size(self, room_id: str) -> int:
        """Get the number of subscribed connections in a room."""
        return len(self.active_connections.get(room_id, []))
