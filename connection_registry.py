from typing import Dict, Optional

from models import Role, UserRecord
from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionRegistry:
    """Connection id -> UserRecord. Only the membership service writes here."""

    def __init__(self):
        self._users: Dict[str, UserRecord] = {}

    def get(self, connection_id: str) -> Optional[UserRecord]:
        return self._users.get(connection_id)

    def set(self, connection_id: str, username: str, room_name: str, role: Role) -> UserRecord:
        record = UserRecord(username=username, room_name=room_name, role=role)
        self._users[connection_id] = record
        logger.debug(f"Connection {connection_id} recorded as {role.value} '{username}' in room {room_name}")
        return record

    def set_role(self, connection_id: str, role: Role) -> bool:
        record = self._users.get(connection_id)
        if record is None:
            return False
        record.role = role
        return True

    def remove(self, connection_id: str) -> Optional[UserRecord]:
        record = self._users.pop(connection_id, None)
        if record is not None:
            logger.debug(f"Connection {connection_id} record removed (was {record.role.value} in {record.room_name})")
        return record

    def items(self):
        return list(self._users.items())

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._users

    def __len__(self) -> int:
        return len(self._users)
