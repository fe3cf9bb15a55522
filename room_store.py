from typing import Dict, List, Optional

from errors import AlreadyExists
from models import Room
from logging_config import get_logger

logger = get_logger(__name__)


class RoomStore:
    """Room name -> Room. Insertions and deletions are guarded by the membership service."""

    def __init__(self):
        self._rooms: Dict[str, Room] = {}

    def get(self, room_name: str) -> Optional[Room]:
        return self._rooms.get(room_name)

    def add(self, room: Room) -> Room:
        if room.name in self._rooms:
            raise AlreadyExists("Room already exists")
        self._rooms[room.name] = room
        logger.debug(f"Room {room.name} stored (total rooms: {len(self._rooms)})")
        return room

    def remove(self, room_name: str) -> Optional[Room]:
        room = self._rooms.pop(room_name, None)
        if room is not None:
            logger.debug(f"Room {room_name} dropped (total rooms: {len(self._rooms)})")
        return room

    def values(self) -> List[Room]:
        return list(self._rooms.values())

    def __contains__(self, room_name: str) -> bool:
        return room_name in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
