from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Inbound websocket payloads

class Envelope(BaseModel):
    event: str
    data: Any = None


class CreateRoomRequest(CamelModel):
    room_id: str = Field(alias="roomId", min_length=1)
    user_ids: list[str] = Field(alias="userIds", min_length=1)


class JoinRoomRequest(CamelModel):
    room_id: str = Field(alias="roomId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)


class JoinByUserRequest(CamelModel):
    user_id: str = Field(alias="userId", min_length=1)
    current_user_id: str = Field(alias="currentUserId", min_length=1)


class SendMessageRequest(CamelModel):
    room_id: str = Field(alias="roomId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    message: str


# Outbound payloads

class RoomSummary(CamelModel):
    id: str
    user_count: int = Field(alias="userCount")

    @classmethod
    def from_room(cls, room) -> "RoomSummary":
        return cls(id=room.id, user_count=room.user_count)


class MessageOut(CamelModel):
    id: str
    room_id: str = Field(alias="roomId")
    user_id: str = Field(alias="userId")
    message: str
    timestamp: datetime

    @classmethod
    def from_message(cls, message) -> "MessageOut":
        return cls(
            id=message.id,
            room_id=message.room_id,
            user_id=message.sender_id,
            message=message.body,
            timestamp=message.timestamp,
        )


class RoomMessagesResponse(CamelModel):
    room_id: str = Field(alias="roomId")
    messages: list[MessageOut]


class ErrorPayload(BaseModel):
    kind: str
    detail: str


# HTTP responses

class RoomDetailsResponse(CamelModel):
    id: str
    user_count: int = Field(alias="userCount")
    created_at: datetime = Field(alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")
    minutes_left: int = Field(alias="minutesLeft")
    message_count: int = Field(alias="messageCount")


class RoomExpirationResponse(CamelModel):
    room_id: str = Field(alias="roomId")
    seconds_left: float = Field(alias="secondsLeft")
    minutes_left: int = Field(alias="minutesLeft")


class HealthResponse(BaseModel):
    status: str
    rooms: int
    connections: Optional[int] = None


# Bare string payloads (register, get_messages, get_room_expiration)
NonEmptyStr = Annotated[str, Field(min_length=1)]
IdentifierPayload = TypeAdapter(NonEmptyStr)
