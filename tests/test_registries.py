"""
Tests for the room model, the connection registry and the room store.
"""

import pytest

from connection_registry import ConnectionRegistry
from errors import AlreadyExists
from models import Member, Role, Room
from room_store import RoomStore


def make_room():
    room = Room(name="lobby", code="1234", admin="admin")
    room.pending.extend([Member("a", "alice"), Member("b", "bob"), Member("c", "carol")])
    return room


class TestRoom:
    def test_pop_pending_keeps_order_of_the_rest(self):
        room = make_room()

        popped = room.pop_pending("b")

        assert popped == Member("b", "bob")
        assert [m.connection_id for m in room.pending] == ["a", "c"]

    def test_pop_missing_returns_none(self):
        room = make_room()

        assert room.pop_pending("zzz") is None
        assert room.pop_active("a") is None
        assert len(room.pending) == 3

    def test_snapshot_is_a_detached_copy(self):
        room = make_room()

        snapshot = room.snapshot()
        snapshot["pending"].clear()
        snapshot["active"].append({"socketId": "x", "username": "x"})

        assert len(room.pending) == 3
        assert room.active == []
        assert room.snapshot()["pending"][0] == {"socketId": "a", "username": "alice"}

    def test_member_ids_lists_pending_then_active(self):
        room = make_room()
        room.active.append(room.pop_pending("a"))

        assert room.member_ids() == ["b", "c", "a"]


class TestConnectionRegistry:
    def test_set_get_and_remove(self):
        registry = ConnectionRegistry()
        registry.set("c1", "alice", "lobby", Role.PENDING)

        assert "c1" in registry
        assert registry.get("c1").role == Role.PENDING
        assert registry.remove("c1").username == "alice"
        assert registry.get("c1") is None
        assert registry.remove("c1") is None

    def test_set_role_on_missing_connection(self):
        registry = ConnectionRegistry()

        assert registry.set_role("ghost", Role.ACTIVE) is False
        assert len(registry) == 0


class TestRoomStore:
    def test_duplicate_name_rejected(self):
        store = RoomStore()
        store.add(Room(name="lobby", code="1", admin="a"))

        with pytest.raises(AlreadyExists):
            store.add(Room(name="lobby", code="2", admin="b"))
        assert store.get("lobby").code == "1"

    def test_remove(self):
        store = RoomStore()
        store.add(Room(name="lobby", code="1", admin="a"))

        assert store.remove("lobby").admin == "a"
        assert "lobby" not in store
        assert store.remove("lobby") is None
        assert len(store) == 0
