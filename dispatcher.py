"""
Broadcast Dispatcher.

Resolves the audience of every outbound notification (one connection, a
room's general group or its admin-only group) and hands the payload to the
pub/sub backend.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend import MemoryBackend
from constants import OWN_MESSAGE_LABEL
from models import Member, Room
from redis_keys import admin_group, room_group
from logging_config import get_logger

logger = get_logger(__name__)


class BroadcastDispatcher:
    def __init__(self, backend: MemoryBackend):
        self.backend = backend

    # Subscriptions

    def subscribe_admin(self, room_name: str, connection_id: str):
        self.backend.join(connection_id, room_group(room_name))
        self.backend.join(connection_id, admin_group(room_name))

    def subscribe_member(self, room_name: str, connection_id: str) -> bool:
        return self.backend.join(connection_id, room_group(room_name))

    def unsubscribe_member(self, room_name: str, connection_id: str):
        self.backend.leave(connection_id, room_group(room_name))

    def close_groups(self, room_name: str):
        self.backend.discard_group(room_group(room_name))
        self.backend.discard_group(admin_group(room_name))
        logger.debug(f"Closed broadcast groups for room {room_name}")

    # Delivery primitives

    def to_connection(self, connection_id: str, event: str, payload: Dict[str, Any]) -> bool:
        return self.backend.send(connection_id, event, payload)

    def to_room(self, room_name: str, event: str, payload: Dict[str, Any], skip: Optional[str] = None) -> int:
        return self.backend.publish(room_group(room_name), event, payload, skip=skip)

    def to_admin(self, room_name: str, event: str, payload: Dict[str, Any]) -> int:
        return self.backend.publish(admin_group(room_name), event, payload)

    # Notifications

    def pending_user(self, room_name: str, member: Member):
        self.to_admin(room_name, "pendingUser", {
            "socketId": member.connection_id,
            "username": member.username,
            "roomName": room_name,
        })

    def update_user_lists(self, room: Room):
        self.to_admin(room.name, "updateUserLists", room.snapshot())

    def join_approved(self, room_name: str, connection_id: str):
        self.to_connection(connection_id, "joinApproved", {
            "roomName": room_name,
            "message": "You have been approved to join the room!",
        })

    def user_joined(self, room_name: str, username: str):
        self.to_room(room_name, "userJoined", {
            "username": username,
            "message": f"{username} joined the room",
        })

    def join_rejected(self, room_name: str, connection_id: str):
        self.to_connection(connection_id, "joinRejected", {
            "roomName": room_name,
            "message": "Your join request was denied by the admin",
        })

    def removed_from_room(self, room_name: str, connection_id: str):
        self.to_connection(connection_id, "removedFromRoom", {
            "roomName": room_name,
            "message": "You have been removed from the room by the admin",
        })

    def user_left(self, room_name: str, username: str, removed: bool = False):
        message = f"{username} was removed from the room" if removed else f"{username} left the room"
        self.to_room(room_name, "userLeft", {"username": username, "message": message})

    def room_closed(self, room_name: str, skip: Optional[str] = None):
        self.to_room(room_name, "roomClosed", {"message": "The room has been closed by the admin"}, skip=skip)

    def new_message(self, room_name: str, sender_id: str, username: str, message: str) -> int:
        """Fan a chat message out; the sender alone gets the self-authored copy."""
        timestamp = datetime.now(timezone.utc).isoformat()
        delivered = self.to_room(room_name, "newMessage", {
            "username": username,
            "message": message,
            "timestamp": timestamp,
            "isOwnMessage": False,
        }, skip=sender_id)
        self.to_connection(sender_id, "newMessage", {
            "username": OWN_MESSAGE_LABEL,
            "message": message,
            "timestamp": timestamp,
            "isOwnMessage": True,
        })
        return delivered
