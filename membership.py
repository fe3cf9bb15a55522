"""
Membership state machine.

Owns both sides of the room <-> connection relation: the RoomStore lists and
the ConnectionRegistry records are only ever changed here, together, while
holding the room's lock. Inserting or deleting a room additionally holds the
registry lock (lock order: registry, then room).

Per (room, connection) the lifecycle is

    absent -> pending -> active -> removed
                      -> rejected

with the admin created directly in the admin role. Any live state ends on
disconnect, and an admin disconnect tears the whole room down.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from connection_registry import ConnectionRegistry
from constants import ADMIN_USERNAME
from dispatcher import BroadcastDispatcher
from errors import AlreadyExists, ChatError, NotFound, NotMember, Unauthorized, ValidationError
from models import Member, Role, Room
from room_store import RoomStore
from logging_config import get_logger

logger = get_logger(__name__)


def _clean(value: Optional[str]) -> str:
    return value.strip() if value else ""


class MembershipService:
    def __init__(self, dispatcher: BroadcastDispatcher, rooms: RoomStore = None, users: ConnectionRegistry = None):
        self.dispatcher = dispatcher
        self.rooms = rooms if rooms is not None else RoomStore()
        self.users = users if users is not None else ConnectionRegistry()
        self._registry_lock = asyncio.Lock()

    @asynccontextmanager
    async def _locked_room(self, room_name: str, missing: ChatError):
        room = self.rooms.get(room_name)
        if room is None:
            raise missing
        async with room.lock:
            # The room may have been torn down (or replaced) while we waited
            if self.rooms.get(room_name) is not room:
                raise missing
            yield room

    @asynccontextmanager
    async def _admin_room(self, room_name: str, requester: str):
        room = self.rooms.get(room_name)
        if room is None or room.admin != requester:
            raise Unauthorized("Unauthorized")
        async with self._locked_room(room_name, Unauthorized("Unauthorized")) as locked:
            yield locked

    def _ensure_unattached(self, requester: str):
        record = self.users.get(requester)
        if record is not None:
            raise AlreadyExists(f"Already in room {record.room_name}")

    async def create_room(self, room_name: Optional[str], code: Optional[str], requester: str) -> Dict[str, Any]:
        room_name = _clean(room_name)
        if not room_name or not code:
            raise ValidationError("Room name and code required")

        async with self._registry_lock:
            if room_name in self.rooms:
                raise AlreadyExists("Room already exists")
            self._ensure_unattached(requester)
            self.rooms.add(Room(name=room_name, code=code, admin=requester))
            self.users.set(requester, ADMIN_USERNAME, room_name, Role.ADMIN)
            self.dispatcher.subscribe_admin(room_name, requester)

        logger.info(f"Room '{room_name}' created by admin {requester}")
        return {"success": True, "message": "Room created successfully", "roomName": room_name}

    async def request_join(self, username: Optional[str], room_name: Optional[str], code: Optional[str], requester: str) -> Dict[str, Any]:
        username = _clean(username)
        room_name = _clean(room_name)
        if not username or not room_name or not code:
            raise ValidationError("All fields are required")
        self._ensure_unattached(requester)

        async with self._locked_room(room_name, NotFound("Room does not exist")) as room:
            if room.code != code:
                raise Unauthorized("Invalid room code")
            self._ensure_unattached(requester)

            member = Member(connection_id=requester, username=username)
            room.pending.append(member)
            self.users.set(requester, username, room_name, Role.PENDING)

            # Alert plus full snapshot; the admin UI relies on both
            self.dispatcher.pending_user(room_name, member)
            self.dispatcher.update_user_lists(room)

        logger.info(f"{username} ({requester}) requesting to join '{room_name}'")
        return {"success": True, "message": "Waiting for admin approval..."}

    async def approve_user(self, room_name: Optional[str], target: Optional[str], requester: str) -> Dict[str, Any]:
        async with self._admin_room(room_name, requester) as room:
            member = room.pop_pending(target)
            if member is None:
                raise NotFound("User not found in pending list")
            room.active.append(member)
            self.users.set_role(target, Role.ACTIVE)

            if self.dispatcher.subscribe_member(room.name, target):
                self.dispatcher.join_approved(room.name, target)
            else:
                logger.info(f"Approved connection {target} is gone; skipping direct notification")
            self.dispatcher.user_joined(room.name, member.username)
            self.dispatcher.update_user_lists(room)

        logger.info(f"{member.username} approved in '{room_name}'")
        return {"success": True, "message": "User approved"}

    async def reject_user(self, room_name: Optional[str], target: Optional[str], requester: str) -> Dict[str, Any]:
        async with self._admin_room(room_name, requester) as room:
            member = room.pop_pending(target)
            if member is None:
                raise NotFound("User not found")
            # A rejected user never was a member: no room-wide notice
            self.users.remove(target)
            self.dispatcher.join_rejected(room.name, target)
            self.dispatcher.update_user_lists(room)

        logger.info(f"{member.username} rejected from '{room_name}'")
        return {"success": True, "message": "User rejected"}

    async def remove_user(self, room_name: Optional[str], target: Optional[str], requester: str) -> Dict[str, Any]:
        async with self._admin_room(room_name, requester) as room:
            member = room.pop_active(target)
            if member is None:
                raise NotFound("User not found")
            self.dispatcher.unsubscribe_member(room.name, target)
            self.dispatcher.removed_from_room(room.name, target)
            self.dispatcher.user_left(room.name, member.username, removed=True)
            self.users.remove(target)
            self.dispatcher.update_user_lists(room)

        logger.info(f"{member.username} removed from '{room_name}'")
        return {"success": True, "message": "User removed"}

    def _check_sender(self, requester: str, room_name: str):
        record = self.users.get(requester)
        if record is None or record.role not in (Role.ACTIVE, Role.ADMIN):
            raise NotMember("You must be an active member to send messages")
        if record.room_name != room_name:
            raise NotMember("You are not in this room")
        return record

    async def send_message(self, message: Optional[str], room_name: Optional[str], requester: str) -> Dict[str, Any]:
        room_name = _clean(room_name)
        if not message or not room_name:
            raise ValidationError("Message and room name required")
        self._check_sender(requester, room_name)

        async with self._locked_room(room_name, NotMember("You are not in this room")) as room:
            record = self._check_sender(requester, room_name)
            delivered = self.dispatcher.new_message(room.name, requester, record.username, message)

        logger.debug(f"[MESSAGE] {record.username} in '{room_name}' delivered to {delivered} others")
        return {"success": True}

    async def get_room_info(self, room_name: Optional[str], requester: str) -> Dict[str, Any]:
        async with self._admin_room(room_name, requester) as room:
            snapshot = room.snapshot()
        return {"success": True, **snapshot}

    async def disconnect(self, connection_id: str) -> bool:
        record = self.users.get(connection_id)
        if record is None:
            logger.info(f"[DISCONNECT] Unknown user {connection_id}")
            return False

        logger.info(f"[DISCONNECT] {record.username} ({connection_id}) disconnected from '{record.room_name}'")
        if record.role == Role.ADMIN:
            await self._close_room(record.room_name, connection_id)
        else:
            await self._leave_room(record.room_name, connection_id)
        return True

    async def _close_room(self, room_name: str, admin_id: str):
        async with self._registry_lock:
            room = self.rooms.get(room_name)
            if room is None or room.admin != admin_id:
                # Torn down by an earlier disconnect while we waited
                return
            async with room.lock:
                self.dispatcher.room_closed(room_name, skip=admin_id)
                for member_id in room.member_ids():
                    self.users.remove(member_id)
                self.users.remove(admin_id)
                self.rooms.remove(room_name)
                self.dispatcher.close_groups(room_name)

        logger.info(f"[CLEANUP] Room '{room_name}' deleted")

    async def _leave_room(self, room_name: str, connection_id: str):
        room = self.rooms.get(room_name)
        if room is None:
            return

        async with room.lock:
            record = self.users.get(connection_id)
            if record is None or record.room_name != room_name or self.rooms.get(room_name) is not room:
                # Already handled by a rejection, removal or room teardown
                return

            room.pop_pending(connection_id)
            member = room.pop_active(connection_id)
            if member is not None:
                self.dispatcher.unsubscribe_member(room_name, connection_id)
                self.dispatcher.user_left(room_name, member.username)
            self.dispatcher.update_user_lists(room)
            self.users.remove(connection_id)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "rooms": len(self.rooms),
            "connections": len(self.users),
            "room_sizes": {
                room.name: {"pending": len(room.pending), "active": len(room.active)}
                for room in self.rooms.values()
            },
        }
