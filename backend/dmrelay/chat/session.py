"""Per-connection chat sessions and the join/send flows.

A session holds the display name a connection asserted and the rooms it has
joined. The coordinator turns a join or send request into a canonical room
id, loads or updates that room through the ``RoomStore``, and returns what
the transport layer must deliver. Subscribing and broadcasting are left to
the transport layer.

The coordinator's methods block on storage and are meant to be called from
worker threads.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from dmrelay.rooms.identity import (
    InvalidRoomToken,
    canonical_room_id,
    derive_peer_and_room,
)
from dmrelay.rooms.schemas import Message
from dmrelay.rooms.store import RoomStore

logger = logging.getLogger(__name__)

ANONYMOUS_NAME = "Anonymous"
DEFAULT_HISTORY_LIMIT = 100
DEFAULT_MAX_NAME_LENGTH = 64

# Characters that must never reach a room id (it names a file on disk).
_FORBIDDEN_NAME_CHARS = ("/", "\\", "\x00", "\n", "\r")


class SessionError(ValueError):
    """A session request was refused."""
    code = "session_error"


class UsernameRequired(SessionError):
    """The connection has not set a username yet."""
    code = "username_required"


class InvalidUsername(SessionError):
    """The asserted name cannot be used as a participant name."""
    code = "invalid_username"


class EmptyMessage(SessionError):
    """A chat message carried no text."""
    code = "empty_message"


@dataclass
class Session:
    """State of one live connection.

    Attributes:
        connection_id: Server-assigned id, stable for the connection.
        username: Asserted display name; ``None`` until set.
        rooms: Canonical ids of the rooms this connection joined.
    """
    connection_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    username: Optional[str] = None
    rooms: Set[str] = field(default_factory=set)


@dataclass
class JoinResult:
    """What the transport layer needs after a successful join."""
    room_id: str
    peer: str
    history: List[Message]


class SessionCoordinator:
    """Resolves rooms for sessions and drives the room store.

    Args:
        store: Shared room store.
        history_limit: Messages replayed to a connection on join.
        max_name_length: Longest accepted username or peer name.
    """

    def __init__(
        self,
        store: RoomStore,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_name_length: int = DEFAULT_MAX_NAME_LENGTH,
    ) -> None:
        self._store = store
        self._history_limit = history_limit
        self._max_name_length = max_name_length

    @property
    def store(self) -> RoomStore:
        return self._store

    def open_session(self) -> Session:
        session = Session()
        logger.info(f"Connection opened: {session.connection_id}")
        return session

    def close_session(self, session: Session) -> None:
        logger.info(f"{session.username or 'Unknown'} disconnected ({session.connection_id})")
        session.rooms.clear()

    def _check_name(self, name: str, what: str) -> None:
        if len(name) > self._max_name_length:
            raise InvalidUsername(f"{what} is longer than {self._max_name_length} characters")
        if any(c in name for c in _FORBIDDEN_NAME_CHARS):
            raise InvalidUsername(f"{what} contains forbidden characters")

    def set_username(self, session: Session, name: Optional[str]) -> str:
        """Set the session's display name; blank names become ``Anonymous``."""
        if name is not None and not isinstance(name, str):
            raise InvalidUsername("username must be a string")
        username = (name or "").strip() or ANONYMOUS_NAME
        self._check_name(username, "username")
        session.username = username
        logger.info(f"{username} set for connection {session.connection_id}")
        return username

    def resolve_room(
        self,
        session: Session,
        token: Optional[str] = None,
        peer: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Return ``(peer, room_id)`` for a request from this session.

        An explicit ``peer`` name is used as given; otherwise the peer is
        extracted from the legacy composite ``token``.

        Raises:
            UsernameRequired: The session has no username yet.
            InvalidRoomToken: No usable peer name could be determined.
        """
        if not session.username:
            raise UsernameRequired("set a username before joining or sending")

        if peer is not None:
            if not isinstance(peer, str) or not peer.strip():
                raise InvalidRoomToken("peer name is empty")
            peer = peer.strip()
            room_id = canonical_room_id(session.username, peer)
        else:
            peer, room_id = derive_peer_and_room(session.username, token)

        try:
            self._check_name(peer, "peer name")
        except InvalidUsername as exc:
            raise InvalidRoomToken(str(exc)) from exc
        return peer, room_id

    def join(
        self,
        session: Session,
        token: Optional[str] = None,
        peer: Optional[str] = None,
    ) -> JoinResult:
        """Join a two-party room and return its recent history."""
        peer, room_id = self.resolve_room(session, token=token, peer=peer)
        self._store.ensure_loaded(room_id)
        history = self._store.get_recent_history(room_id, self._history_limit)
        session.rooms.add(room_id)
        logger.info(f"{session.username} joined {room_id}")
        return JoinResult(room_id=room_id, peer=peer, history=history)

    def send_message(
        self,
        session: Session,
        text,
        token: Optional[str] = None,
        peer: Optional[str] = None,
    ) -> Message:
        """Store a message from this session and return it for broadcast.

        Joining the room first is not required. The message time is set by
        the store when it is appended.
        """
        if not session.username:
            raise UsernameRequired("set a username before sending")
        if not text:
            raise EmptyMessage("message text is empty")

        _, room_id = self.resolve_room(session, token=token, peer=peer)
        message = Message(username=session.username, text=str(text), roomId=room_id)
        return self._store.append(room_id, message, stamp_time=True)
