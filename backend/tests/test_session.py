"""Tests for SessionCoordinator join/send flows."""
import threading
from datetime import timedelta

import pytest

from dmrelay.chat.session import (
    ANONYMOUS_NAME,
    EmptyMessage,
    InvalidUsername,
    SessionCoordinator,
    UsernameRequired,
)
from dmrelay.rooms.identity import InvalidRoomToken
from dmrelay.rooms.store import RoomStore


@pytest.fixture
def store(backend):
    return RoomStore(backend, max_messages=50)


@pytest.fixture
def coordinator(store):
    return SessionCoordinator(store, history_limit=100)


def _session(coordinator, name):
    session = coordinator.open_session()
    coordinator.set_username(session, name)
    return session


class TestSetUsername:

    def test_sets_name(self, coordinator):
        session = coordinator.open_session()
        assert session.username is None
        assert coordinator.set_username(session, "alice") == "alice"
        assert session.username == "alice"

    @pytest.mark.parametrize("name", [None, "", "   "])
    def test_blank_becomes_anonymous(self, coordinator, name):
        session = coordinator.open_session()
        assert coordinator.set_username(session, name) == ANONYMOUS_NAME

    def test_can_be_overwritten(self, coordinator):
        session = _session(coordinator, "alice")
        coordinator.set_username(session, "alicia")
        assert session.username == "alicia"

    @pytest.mark.parametrize("name", ["a/b", "a\\b", "line\nbreak", "x" * 65, 42])
    def test_rejects_unusable_names(self, coordinator, name):
        session = coordinator.open_session()
        with pytest.raises(InvalidUsername):
            coordinator.set_username(session, name)
        assert session.username is None

    def test_connection_ids_are_unique(self, coordinator):
        assert coordinator.open_session().connection_id != coordinator.open_session().connection_id


class TestJoin:

    def test_requires_username(self, coordinator):
        with pytest.raises(UsernameRequired):
            coordinator.join(coordinator.open_session(), "bob")

    def test_legacy_tokens_resolve_same_room(self, coordinator):
        alice = _session(coordinator, "alice")
        bob = _session(coordinator, "bob")
        assert coordinator.join(alice, "bob").room_id == "alice_bob"
        assert coordinator.join(bob, "alice_bob").room_id == "alice_bob"
        assert alice.rooms == {"alice_bob"}

    def test_explicit_peer(self, coordinator):
        bob = _session(coordinator, "bob")
        result = coordinator.join(bob, peer="alice")
        assert (result.peer, result.room_id) == ("alice", "alice_bob")

    def test_peer_names_with_separator_kept_verbatim(self, coordinator):
        alice = _session(coordinator, "alice")
        assert coordinator.join(alice, peer="bob_smith").room_id == "alice_bob_smith"

    @pytest.mark.parametrize("token", ["", "alice", "alice_", None])
    def test_invalid_tokens(self, coordinator, token):
        alice = _session(coordinator, "alice")
        with pytest.raises(InvalidRoomToken):
            coordinator.join(alice, token)
        assert alice.rooms == set()

    def test_unsafe_peer_rejected(self, coordinator):
        alice = _session(coordinator, "alice")
        with pytest.raises(InvalidRoomToken):
            coordinator.join(alice, peer="../etc")

    def test_history_replayed_and_capped(self, backend, make_message):
        store = RoomStore(backend, max_messages=500)
        coordinator = SessionCoordinator(store, history_limit=100)
        backend.save("alice_bob", [make_message(text=str(i)) for i in range(150)])

        result = coordinator.join(_session(coordinator, "alice"), "bob")

        assert len(result.history) == 100
        assert result.history[0].text == "50"
        assert result.history[-1].text == "149"


class TestSendMessage:

    def test_requires_username(self, coordinator):
        with pytest.raises(UsernameRequired):
            coordinator.send_message(coordinator.open_session(), "hi", "bob")

    @pytest.mark.parametrize("text", ["", None])
    def test_requires_text(self, coordinator, text):
        with pytest.raises(EmptyMessage):
            coordinator.send_message(_session(coordinator, "alice"), text, "bob")

    def test_builds_and_stores_message(self, coordinator, backend):
        alice = _session(coordinator, "alice")
        message = coordinator.send_message(alice, "hi", "bob")

        assert message.username == "alice"
        assert message.text == "hi"
        assert message.roomId == "alice_bob"
        assert message.time.tzinfo is not None
        assert backend.load("alice_bob") == [message]

    def test_text_coerced_to_string(self, coordinator):
        message = coordinator.send_message(_session(coordinator, "alice"), 42, "bob")
        assert message.text == "42"

    def test_send_without_join(self, coordinator, store):
        bob = _session(coordinator, "bob")
        coordinator.send_message(bob, "first", peer="alice")
        assert store.message_count("alice_bob") == 1
        assert bob.rooms == set()

    def test_invalid_token(self, coordinator):
        with pytest.raises(InvalidRoomToken):
            coordinator.send_message(_session(coordinator, "alice"), "hi", "alice")

    def test_time_set_when_stored(self, coordinator, store, backend, make_message):
        ahead = store.append("alice_bob", make_message(age=-timedelta(minutes=5)))
        message = coordinator.send_message(_session(coordinator, "bob"), "reply", peer="alice")

        assert message.time >= ahead.time
        times = [m.time for m in backend.load("alice_bob")]
        assert times == sorted(times)

    def test_concurrent_senders_stay_chronological(self, coordinator, store):
        alice = _session(coordinator, "alice")
        bob = _session(coordinator, "bob")

        def sender(session, peer):
            for i in range(15):
                coordinator.send_message(session, f"{session.username} {i}", peer=peer)

        threads = [
            threading.Thread(target=sender, args=(alice, "bob")),
            threading.Thread(target=sender, args=(bob, "alice")),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        history = store.get_recent_history("alice_bob", 100)
        assert len(history) == 30
        assert [m.time for m in history] == sorted(m.time for m in history)
