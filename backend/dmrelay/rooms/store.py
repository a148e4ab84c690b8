"""In-memory room cache backed by durable per-room logs.

Every room that has been joined or written to stays cached for the lifetime
of the process. Each mutation rewrites the room's full log to storage before
returning, so what a later join replays is what was persisted.

Thread Safety:
    Store methods are blocking (they do file I/O) and are called from
    worker threads. All work on a room happens under that room's lock, so
    two joins cannot double-load a room and two sends cannot lose an update.
    Rooms do not block each other.

Failure Model:
    Storage failures never reach the caller. A missing, unreadable or
    corrupt log is cached as an empty log; a failed write is logged and the
    in-memory log keeps the new message even though storage does not.
"""
import logging
import threading
from typing import Dict, List

from .persistence import CorruptRoomData, RoomFileBackend, RoomNotFound, RoomStorageError
from .schemas import Message, utc_now

logger = logging.getLogger(__name__)

# Default cap on messages kept per room.
DEFAULT_MAX_MESSAGES = 2000


class RoomStore:
    """Owns the room id -> message log mapping.

    Args:
        backend: Durable storage for room logs.
        max_messages: Maximum messages kept per room; older ones are dropped
            first once the cap is exceeded.
    """

    def __init__(self, backend: RoomFileBackend, max_messages: int = DEFAULT_MAX_MESSAGES) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self._backend = backend
        self._max_messages = max_messages

        # room_id -> ordered message log (oldest first)
        self._rooms: Dict[str, List[Message]] = {}

        # room_id -> lock guarding that room's cache entry and durable file
        self._room_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def _lock_for(self, room_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._room_locks.get(room_id)
            if lock is None:
                lock = self._room_locks[room_id] = threading.Lock()
            return lock

    def _read(self, room_id: str) -> List[Message]:
        """Read a room's stored log, degrading to empty on any storage error."""
        try:
            log = list(self._backend.load(room_id))
            logger.debug("Loaded %d messages for room %s", len(log), room_id)
        except RoomNotFound:
            log = []
        except CorruptRoomData as e:
            logger.error(f"Corrupt log for room {room_id}, starting empty: {e}")
            log = []
        except RoomStorageError as e:
            logger.error(f"Error reading log for room {room_id}, starting empty: {e}")
            log = []

        if len(log) > self._max_messages:
            del log[: len(log) - self._max_messages]
        return log

    def _load_locked(self, room_id: str) -> List[Message]:
        """Load a room into the cache. Caller must hold the room's lock."""
        log = self._rooms.get(room_id)
        if log is not None:
            return log

        log = self._read(room_id)
        with self._locks_guard:
            self._rooms[room_id] = log
        return log

    def ensure_loaded(self, room_id: str) -> None:
        """Make sure a room is cached, loading it from storage on first use."""
        with self._lock_for(room_id):
            self._load_locked(room_id)

    def is_cached(self, room_id: str) -> bool:
        return room_id in self._rooms

    def get_recent_history(self, room_id: str, limit: int) -> List[Message]:
        """Return up to ``limit`` most recent messages, oldest first.

        Reads the cache only; a room that was never loaded has no history.
        """
        if limit <= 0 or room_id not in self._rooms:
            return []
        with self._lock_for(room_id):
            return self._rooms[room_id][-limit:]

    def read_history(self, room_id: str, limit: int) -> List[Message]:
        """Return recent history without caching a room that is not cached.

        Used by read-only callers that may name arbitrary rooms.
        """
        if limit <= 0:
            return []
        if room_id in self._rooms:
            return self.get_recent_history(room_id, limit)
        return self._read(room_id)[-limit:]

    def append(self, room_id: str, message: Message, stamp_time: bool = False) -> Message:
        """Append a message, trim to the cap, and persist the full log.

        A room that is not cached yet is loaded first so that its stored
        history is kept rather than overwritten.

        With ``stamp_time`` the message's time is set here, under the room
        lock, and never earlier than the room's last message, so log order
        and time order agree.

        Returns:
            The message as stored.
        """
        with self._lock_for(room_id):
            log = self._load_locked(room_id)
            if stamp_time:
                now = utc_now()
                if log and log[-1].time > now:
                    now = log[-1].time
                message = message.model_copy(update={"time": now})

            log.append(message)
            if len(log) > self._max_messages:
                del log[: len(log) - self._max_messages]

            try:
                self._backend.save(room_id, log)
            except RoomStorageError as e:
                logger.error(f"Error saving log for room {room_id}: {e}")
            return message

    def message_count(self, room_id: str) -> int:
        """Number of cached messages in a room (0 if not cached)."""
        if room_id not in self._rooms:
            return 0
        with self._lock_for(room_id):
            return len(self._rooms[room_id])

    def cached_rooms(self) -> List[str]:
        with self._locks_guard:
            return sorted(self._rooms)
