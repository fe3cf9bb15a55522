from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as SchemaError
from schemas.rooms import (
    AckResponse, CreateRoomRequest, InboundFrame, MemberActionRequest,
    RequestJoinRequest, RoomInfoRequest, SendMessageRequest,
)
from backend import MemoryBackend
from errors import ChatError
from membership import MembershipService
import asyncio
import json
import uuid
from typing import Any, Dict, Optional
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(tags=["rooms"])


async def _create_room(service: MembershipService, connection_id: str, req: CreateRoomRequest):
    return await service.create_room(req.roomName, req.code, connection_id)

async def _request_join(service: MembershipService, connection_id: str, req: RequestJoinRequest):
    return await service.request_join(req.username, req.roomName, req.code, connection_id)

async def _approve_user(service: MembershipService, connection_id: str, req: MemberActionRequest):
    return await service.approve_user(req.roomName, req.userSocketId, connection_id)

async def _reject_user(service: MembershipService, connection_id: str, req: MemberActionRequest):
    return await service.reject_user(req.roomName, req.userSocketId, connection_id)

async def _remove_user(service: MembershipService, connection_id: str, req: MemberActionRequest):
    return await service.remove_user(req.roomName, req.userSocketId, connection_id)

async def _send_message(service: MembershipService, connection_id: str, req: SendMessageRequest):
    return await service.send_message(req.message, req.roomName, connection_id)

async def _get_room_info(service: MembershipService, connection_id: str, req: RoomInfoRequest):
    return await service.get_room_info(req.roomName, connection_id)


# event name -> (request schema, handler)
EVENT_HANDLERS = {
    "createRoom": (CreateRoomRequest, _create_room),
    "requestJoin": (RequestJoinRequest, _request_join),
    "approveUser": (MemberActionRequest, _approve_user),
    "rejectUser": (MemberActionRequest, _reject_user),
    "removeUser": (MemberActionRequest, _remove_user),
    "sendMessage": (SendMessageRequest, _send_message),
    "getRoomInfo": (RoomInfoRequest, _get_room_info),
}


def _failure(message: str, error: str) -> Dict[str, Any]:
    return {"success": False, "message": message, "error": error}


async def handle_event(service: MembershipService, connection_id: str, event: Optional[str], data: Optional[dict]) -> Dict[str, Any]:
    """Run one inbound event and return its acknowledgment payload."""
    if event not in EVENT_HANDLERS:
        logger.warning(f"Unknown event {event!r} from connection {connection_id}")
        return _failure(f"Unknown event: {event}", "UnknownEvent")

    schema, handler = EVENT_HANDLERS[event]
    try:
        request = schema.model_validate(data or {})
    except SchemaError as e:
        logger.warning(f"Invalid {event} payload from connection {connection_id}: {e.error_count()} errors")
        return _failure("Invalid payload", "ValidationError")

    try:
        result = await handler(service, connection_id, request)
    except ChatError as e:
        logger.warning(f"{event} from connection {connection_id} failed: {e.code}: {e.message}")
        return e.to_ack()
    except Exception as e:
        logger.error(f"Error handling {event} from connection {connection_id}: {e}", exc_info=True)
        return _failure("Internal server error", "InternalError")

    return AckResponse(**result).model_dump(exclude_none=True)


async def handle_frame(service: MembershipService, connection_id: str, raw: str) -> Dict[str, Any]:
    """Parse a raw text frame and build the ack frame sent back to the client."""
    try:
        frame = InboundFrame.model_validate(json.loads(raw))
    except (json.JSONDecodeError, SchemaError):
        logger.debug(f"Malformed frame from connection {connection_id}")
        return {"event": "ack", "ackId": None, "data": _failure("Malformed frame", "ValidationError")}

    ack = await handle_event(service, connection_id, frame.event, frame.data)
    return {"event": "ack", "ackId": frame.ackId, "data": ack}


async def drain_outbox(websocket: WebSocket, outbox: asyncio.Queue, connection_id: str, backend: MemoryBackend):
    """Writer task: push queued frames to the socket until the sentinel arrives."""
    while True:
        frame = await outbox.get()
        if frame is None:
            break
        try:
            await websocket.send_json(frame)
        except Exception as e:
            logger.debug(f"Error sending to connection {connection_id}: {e}")
            # Stop routing frames to a socket nobody drains
            backend.unregister(connection_id)
            break


@rooms_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    service: MembershipService = websocket.app.state.membership
    backend = websocket.app.state.backend

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    logger.info(f"[CONNECTION] User connected: {connection_id}")

    outbox = backend.register(connection_id)
    writer = asyncio.create_task(drain_outbox(websocket, outbox, connection_id, backend))
    outbox.put_nowait({"event": "connected", "data": {"socketId": connection_id}})

    try:
        while True:
            raw = await websocket.receive_text()
            outbox.put_nowait(await handle_frame(service, connection_id, raw))
    except WebSocketDisconnect:
        logger.debug(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        logger.error(f"Error receiving from connection {connection_id}: {e}", exc_info=True)
    finally:
        # Unregister first so nothing is addressed to the closed socket
        backend.unregister(connection_id)
        await service.disconnect(connection_id)
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
