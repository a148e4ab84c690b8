"""Canonical two-party room identifiers.

A direct-message room is named after its two participants. The name must
not depend on who joined first, so both names are sorted before joining:

    canonical_room_id("bob", "alice") == canonical_room_id("alice", "bob") == "alice_bob"

Older clients do not send the peer's name directly; they send a composite
token such as ``"bob"`` or ``"alice_bob"``. ``derive_peer_and_room`` strips
the sender's own name and one separator from that token to recover the peer.
"""
from typing import Tuple

# Separator between the two participant names in a room id.
ROOM_ID_SEPARATOR = "_"


class InvalidRoomToken(ValueError):
    """Raised when no peer name can be recovered from a client token."""


def canonical_room_id(name_a: str, name_b: str) -> str:
    """Return the order-independent room id for a pair of participants.

    Names are compared by code point, exactly as given. ``name_a == name_b``
    yields a self-room (``"alice_alice"``) rather than an error.
    """
    first, second = sorted((name_a, name_b))
    return f"{first}{ROOM_ID_SEPARATOR}{second}"


def extract_peer_name(self_name: str, token: str) -> str:
    """Recover the peer's name from a legacy composite room token.

    The first occurrence of ``self_name`` is removed, then the first
    separator, then surrounding whitespace. ``"alice_bob"`` seen by ``bob``
    becomes ``"alice"``; a bare ``"alice"`` stays ``"alice"``.
    """
    peer = token
    if self_name:
        peer = peer.replace(self_name, "", 1)
    peer = peer.replace(ROOM_ID_SEPARATOR, "", 1)
    return peer.strip()


def derive_peer_and_room(self_name: str, token: str) -> Tuple[str, str]:
    """Resolve ``(peer_name, room_id)`` from the sender's name and a token.

    Raises:
        InvalidRoomToken: If the token is empty or nothing remains of it
            once the sender's own name has been stripped.
    """
    if not isinstance(token, str) or not token.strip():
        raise InvalidRoomToken("room token is empty")

    peer = extract_peer_name(self_name, token)
    if not peer:
        raise InvalidRoomToken(f"no peer name left in room token {token!r}")
    return peer, canonical_room_id(self_name, peer)
