from pydantic import BaseModel, ConfigDict
from typing import Any, Optional


class InboundFrame(BaseModel):
    event: Optional[str] = None
    data: Optional[dict] = None
    ackId: Optional[Any] = None

class CreateRoomRequest(BaseModel):
    roomName: Optional[str] = None
    code: Optional[str] = None

class RequestJoinRequest(BaseModel):
    username: Optional[str] = None
    roomName: Optional[str] = None
    code: Optional[str] = None

class MemberActionRequest(BaseModel):
    # approveUser / rejectUser / removeUser
    userSocketId: Optional[str] = None
    roomName: Optional[str] = None

class SendMessageRequest(BaseModel):
    message: Optional[str] = None
    roomName: Optional[str] = None

class RoomInfoRequest(BaseModel):
    roomName: Optional[str] = None

class AckResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
