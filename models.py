"""
Room and user records shared by the registries and the membership service.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class Role(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ADMIN = "admin"


@dataclass
class UserRecord:
    username: str
    room_name: str
    role: Role


@dataclass
class Member:
    connection_id: str
    username: str

    def to_dict(self) -> Dict[str, str]:
        return {"socketId": self.connection_id, "username": self.username}


@dataclass
class Room:
    name: str
    code: str
    admin: str
    pending: List[Member] = field(default_factory=list)
    active: List[Member] = field(default_factory=list)
    # Serializes membership edits for this room only
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @staticmethod
    def _index_of(members: List[Member], connection_id: str) -> int:
        for index, member in enumerate(members):
            if member.connection_id == connection_id:
                return index
        return -1

    def is_pending(self, connection_id: str) -> bool:
        return self._index_of(self.pending, connection_id) != -1

    def is_active(self, connection_id: str) -> bool:
        return self._index_of(self.active, connection_id) != -1

    def pop_pending(self, connection_id: str) -> Optional[Member]:
        index = self._index_of(self.pending, connection_id)
        return self.pending.pop(index) if index != -1 else None

    def pop_active(self, connection_id: str) -> Optional[Member]:
        index = self._index_of(self.active, connection_id)
        return self.active.pop(index) if index != -1 else None

    def member_ids(self) -> List[str]:
        return [member.connection_id for member in self.pending + self.active]

    def snapshot(self) -> Dict[str, List[Dict[str, str]]]:
        """Fresh copies of both lists; safe to hand to callers and serializers."""
        return {
            "pending": [member.to_dict() for member in self.pending],
            "active": [member.to_dict() for member in self.active],
        }
