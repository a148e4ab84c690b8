"""Room identity, message storage and retention."""
from .identity import InvalidRoomToken, canonical_room_id, derive_peer_and_room
from .persistence import (
    CorruptRoomData,
    InvalidRoomId,
    RoomFileBackend,
    RoomNotFound,
    RoomStorageError,
    RoomWriteError,
)
from .retention import RetentionSweeper, SweepReport
from .schemas import Message
from .store import RoomStore

__all__ = [
    "CorruptRoomData",
    "InvalidRoomId",
    "InvalidRoomToken",
    "Message",
    "RetentionSweeper",
    "RoomFileBackend",
    "RoomNotFound",
    "RoomStorageError",
    "RoomStore",
    "RoomWriteError",
    "SweepReport",
    "canonical_room_id",
    "derive_peer_and_room",
]
