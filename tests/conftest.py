"""
Pytest configuration and fixtures for the chat service tests.
"""

import pytest

from backend import MemoryBackend
from dispatcher import BroadcastDispatcher
from membership import MembershipService
from models import Role


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def dispatcher(backend):
    return BroadcastDispatcher(backend)


@pytest.fixture
def service(dispatcher):
    return MembershipService(dispatcher)


@pytest.fixture
def connect(backend):
    """Register connections on the hub and hand back their outboxes."""
    def _connect(*connection_ids):
        outboxes = [backend.register(conn_id) for conn_id in connection_ids]
        return outboxes[0] if len(outboxes) == 1 else outboxes
    return _connect


def drain(outbox):
    """Pop every queued frame without waiting."""
    frames = []
    while not outbox.empty():
        frame = outbox.get_nowait()
        if frame is not None:
            frames.append(frame)
    return frames


def events(frames):
    return [frame["event"] for frame in frames]


def frames_named(frames, name):
    return [frame["data"] for frame in frames if frame["event"] == name]


def assert_consistent(service):
    """Check the room/record relation is the same seen from both sides."""
    for conn_id, record in service.users.items():
        room = service.rooms.get(record.room_name)
        assert room is not None, f"{conn_id} references missing room {record.room_name}"
        if record.role == Role.ADMIN:
            assert room.admin == conn_id
            assert not room.is_pending(conn_id) and not room.is_active(conn_id)
        elif record.role == Role.PENDING:
            assert room.is_pending(conn_id) and not room.is_active(conn_id)
        else:
            assert room.is_active(conn_id) and not room.is_pending(conn_id)

    for room in service.rooms.values():
        ids = room.member_ids()
        assert len(ids) == len(set(ids)), f"duplicate entries in {room.name}"
        assert room.admin not in ids
        assert room.admin in service.users
        for conn_id in ids:
            record = service.users.get(conn_id)
            assert record is not None and record.room_name == room.name
