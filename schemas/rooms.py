import json
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from constants import MAX_ROOM_CODE_LENGTH


class MalformedMessage(Exception):
    """A client frame that is not a well-formed signaling message."""


class ClientMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class CreateRoomMessage(ClientMessage):
    room_id: Optional[str] = Field(None, alias="roomId", max_length=MAX_ROOM_CODE_LENGTH)

class JoinRoomMessage(ClientMessage):
    room_id: str = Field(alias="roomId", min_length=1, max_length=MAX_ROOM_CODE_LENGTH)

class LeaveRoomMessage(ClientMessage):
    room_id: str = Field(alias="roomId", min_length=1, max_length=MAX_ROOM_CODE_LENGTH)

class SignalMessage(ClientMessage):
    room_id: str = Field(alias="roomId", min_length=1, max_length=MAX_ROOM_CODE_LENGTH)
    payload: Any  # opaque, never inspected


MESSAGE_MODELS = {
    "create-room": CreateRoomMessage,
    "join-room": JoinRoomMessage,
    "leave-room": LeaveRoomMessage,
    "offer": SignalMessage,
    "answer": SignalMessage,
    "ice-candidate": SignalMessage,
}


def parse_client_message(raw: str) -> Tuple[str, ClientMessage]:
    """Decode one text frame into (message_type, validated model).

    Raises MalformedMessage for invalid JSON, non-object frames, unknown types
    and missing or invalid fields.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedMessage(f"Invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise MalformedMessage("Message must be a JSON object")

    message_type = data.get("type")
    model = MESSAGE_MODELS.get(message_type) if isinstance(message_type, str) else None
    if model is None:
        raise MalformedMessage(f"Unknown message type: {message_type!r}")

    try:
        return message_type, model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(part) for part in error["loc"]) for error in e.errors())
        raise MalformedMessage(f"Invalid {message_type} message: {fields}") from e


class CreateRoomResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId")
    ws_url: str = Field(alias="wsUrl")

class RoomDetailsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId")
    created_at: str = Field(alias="createdAt")
    participants_count: int = Field(alias="participantsCount")
    is_full: bool = Field(alias="isFull")

class HealthResponse(BaseModel):
    status: str
    rooms: int
    connections: int
    relayed: int
    dropped_unaddressable: int
    dropped_overflow: int
