"""File-based durable storage for room message logs.

Each room is stored as one JSON array of messages:

    {data_dir}/room_{room_id}.json

Writes go to a temporary file in the same directory which is then renamed
over the target, so a concurrent reader sees either the previous log or the
new one, never a partial file.
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Sequence, Union

from pydantic import ValidationError

from .schemas import Message, MessageLog

logger = logging.getLogger(__name__)

ROOM_FILE_PREFIX = "room_"
ROOM_FILE_SUFFIX = ".json"


class RoomStorageError(Exception):
    """Base class for room persistence failures."""


class RoomNotFound(RoomStorageError):
    """No durable log exists for the room."""


class CorruptRoomData(RoomStorageError):
    """The durable log exists but cannot be parsed."""


class RoomWriteError(RoomStorageError):
    """Writing or deleting a durable log failed."""


class InvalidRoomId(RoomStorageError):
    """The room id cannot be mapped to a file inside the data directory."""


class RoomFileBackend:
    """Reads and writes one JSON file per room.

    Args:
        data_dir: Directory holding the room files. Created if missing.
    """

    def __init__(self, data_dir: Union[str, Path]) -> None:
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path_for(self, room_id: str) -> Path:
        """Return the file path of a room's log.

        Raises:
            InvalidRoomId: If the id is empty or would escape ``data_dir``.
        """
        if not room_id or any(c in room_id for c in ("/", "\\", "\x00")):
            raise InvalidRoomId(f"unsafe room id {room_id!r}")
        filename = f"{ROOM_FILE_PREFIX}{room_id}{ROOM_FILE_SUFFIX}"
        if Path(filename).name != filename:
            raise InvalidRoomId(f"unsafe room id {room_id!r}")
        return self._data_dir / filename

    def load(self, room_id: str) -> List[Message]:
        """Read a room's message log.

        Raises:
            RoomNotFound: The room has no durable log.
            CorruptRoomData: The file is not a valid message list.
            RoomStorageError: The file could not be read.
        """
        path = self.path_for(room_id)
        try:
            raw = path.read_bytes()
        except FileNotFoundError as exc:
            raise RoomNotFound(room_id) from exc
        except OSError as exc:
            raise RoomStorageError(f"cannot read {path}: {exc}") from exc

        try:
            return MessageLog.validate_json(raw)
        except ValidationError as exc:
            raise CorruptRoomData(f"{path}: {exc.error_count()} validation error(s)") from exc

    def save(self, room_id: str, messages: Sequence[Message]) -> None:
        """Atomically replace a room's log with ``messages``.

        Raises:
            RoomWriteError: The file could not be written.
        """
        path = self.path_for(room_id)
        payload = MessageLog.dump_json(list(messages), indent=2)

        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self._data_dir, prefix=f".{path.name}.", suffix=".tmp"
            )
        except OSError as exc:
            raise RoomWriteError(f"cannot write {path}: {exc}") from exc

        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.debug("Temporary file %s already gone", tmp_name)
            raise RoomWriteError(f"cannot write {path}: {exc}") from exc

        logger.debug("Saved %d messages to %s", len(messages), path)

    def list_rooms(self) -> List[str]:
        """Return the ids of all rooms that have a durable log."""
        start, end = len(ROOM_FILE_PREFIX), -len(ROOM_FILE_SUFFIX)
        return sorted(
            p.name[start:end]
            for p in self._data_dir.glob(f"{ROOM_FILE_PREFIX}*{ROOM_FILE_SUFFIX}")
            if p.is_file() and len(p.name) > len(ROOM_FILE_PREFIX) + len(ROOM_FILE_SUFFIX)
        )

    def delete(self, room_id: str) -> None:
        """Remove a room's log. Deleting an absent log is not an error.

        Raises:
            RoomWriteError: The file exists but could not be removed.
        """
        path = self.path_for(room_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise RoomWriteError(f"cannot delete {path}: {exc}") from exc
