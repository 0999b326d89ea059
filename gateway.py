import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Iterable, Set

from fastapi import WebSocket
from pydantic import BaseModel, ValidationError

from backend import RoomRegistry
from exceptions import RoomError
from logging_config import get_logger
from schemas.rooms import (
    CreateRoomRequest,
    Envelope,
    ErrorPayload,
    IdentifierPayload,
    JoinByUserRequest,
    JoinRoomRequest,
    MessageOut,
    RoomMessagesResponse,
    RoomSummary,
    SendMessageRequest,
)

logger = get_logger(__name__)


def encode_event(event: str, data: Any) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    elif isinstance(data, list):
        data = [item.model_dump(mode="json", by_alias=True) if isinstance(item, BaseModel) else item for item in data]
    return json.dumps({"event": event, "data": data})


class ConnectionManager:
    """Tracks live websocket connections and which user each one is registered as."""

    def __init__(self):
        self.connections: Dict[str, WebSocket] = {}
        self.user_connections: Dict[str, Set[str]] = {}
        self.connection_users: Dict[str, str] = {}

    def connect(self, connection_id: str, websocket: WebSocket):
        self.connections[connection_id] = websocket
        logger.debug(f"Connection {connection_id} tracked (total: {len(self.connections)})")

    def bind_user(self, connection_id: str, user_id: str):
        self._unbind(connection_id)
        self.connection_users[connection_id] = user_id
        self.user_connections.setdefault(user_id, set()).add(connection_id)
        logger.debug(f"Connection {connection_id} registered as user {user_id}")

    def disconnect(self, connection_id: str):
        self._unbind(connection_id)
        if self.connections.pop(connection_id, None) is not None:
            logger.debug(f"Connection {connection_id} removed (remaining: {len(self.connections)})")

    def _unbind(self, connection_id: str):
        user_id = self.connection_users.pop(connection_id, None)
        if user_id is None:
            return
        connection_ids = self.user_connections.get(user_id)
        if connection_ids is not None:
            connection_ids.discard(connection_id)
            if not connection_ids:
                del self.user_connections[user_id]

    def connections_for_users(self, user_ids: Iterable[str]) -> Set[str]:
        targets = set()
        for user_id in user_ids:
            targets |= self.user_connections.get(user_id, set())
        return targets

    async def send(self, connection_id: str, event: str, data: Any):
        await self.send_many({connection_id}, event, data)

    async def send_many(self, connection_ids: Iterable[str], event: str, data: Any):
        connection_ids = [cid for cid in connection_ids if cid in self.connections]
        if not connection_ids:
            return
        message = encode_event(event, data)
        results = await asyncio.gather(
            *(self.connections[cid].send_text(message) for cid in connection_ids),
            return_exceptions=True,
        )
        for connection_id, result in zip(connection_ids, results):
            if isinstance(result, Exception):
                logger.warning(f"Error sending {event} to connection {connection_id}: {result}")
                self.disconnect(connection_id)
        logger.debug(f"Sent {event} to {len(connection_ids)} connections")

    async def broadcast(self, event: str, data: Any):
        await self.send_many(list(self.connections), event, data)


class SessionGateway:
    """Turns inbound client events into registry calls and routes the replies.

    Room failures are reported only to the connection that caused them.
    """

    def __init__(self, registry: RoomRegistry, connections: ConnectionManager):
        self.registry = registry
        self.connections = connections
        self._background_tasks: Set[asyncio.Task] = set()
        self.handlers: Dict[str, Callable[[str, Any], Awaitable[None]]] = {
            "register": self.on_register,
            "create_room": self.on_create_room,
            "join_room": self.on_join_room,
            "join_by_user": self.on_join_by_user,
            "send_message": self.on_send_message,
            "get_messages": self.on_get_messages,
            "get_room_expiration": self.on_get_room_expiration,
        }
        registry.add_delete_listener(self._on_room_deleted)

    async def handle_frame(self, connection_id: str, raw: str):
        try:
            envelope = Envelope.model_validate(json.loads(raw))
        except json.JSONDecodeError:
            logger.warning(f"Connection {connection_id} sent a frame that is not JSON")
            await self.send_error(connection_id, "invalid_json", "Frame is not valid JSON")
            return
        except ValidationError as e:
            logger.warning(f"Connection {connection_id} sent a malformed envelope: {e.error_count()} errors")
            await self.send_error(connection_id, "invalid_payload", "Expected {\"event\": ..., \"data\": ...}")
            return
        await self.dispatch(connection_id, envelope.event, envelope.data)

    async def dispatch(self, connection_id: str, event: str, data: Any):
        handler = self.handlers.get(event)
        if handler is None:
            logger.warning(f"Unknown event {event!r} from connection {connection_id}")
            await self.send_error(connection_id, "unknown_event", f"Unknown event: {event}")
            return

        logger.debug(f"Handling {event} from connection {connection_id}")
        try:
            await handler(connection_id, data)
        except ValidationError as e:
            logger.warning(f"Invalid {event} payload from connection {connection_id}: {e.error_count()} errors")
            await self.send_error(connection_id, "invalid_payload", f"Invalid payload for {event}")
        except RoomError as e:
            logger.warning(f"{event} rejected for connection {connection_id}: {e.detail} (room {e.room_id})")
            await self.send_error(connection_id, e.kind, e.detail)

    async def send_error(self, connection_id: str, kind: str, detail: str):
        await self.connections.send(connection_id, "error", ErrorPayload(kind=kind, detail=detail))

    # Inbound events

    async def on_register(self, connection_id: str, data: Any):
        user_id = IdentifierPayload.validate_python(data)
        self.connections.bind_user(connection_id, user_id)
        logger.info(f"User {user_id} registered on connection {connection_id}")
        await self.send_user_rooms(connection_id, user_id)

    async def on_create_room(self, connection_id: str, data: Any):
        request = CreateRoomRequest.model_validate(data)
        room = self.registry.create(request.room_id, request.user_ids)
        targets = self.connections.connections_for_users(request.user_ids)
        await self.connections.send_many(targets, "room_created", RoomSummary.from_room(room))

    async def on_join_room(self, connection_id: str, data: Any):
        request = JoinRoomRequest.model_validate(data)
        room = self.registry.join(request.room_id, request.user_id)
        minutes_left = self.registry.minutes_left(room.id)
        await self.connections.send(connection_id, "room_joined", RoomSummary.from_room(room))
        await self.connections.send(connection_id, "room_expiration", minutes_left)
        await self.send_user_rooms(connection_id, request.user_id)

    async def on_join_by_user(self, connection_id: str, data: Any):
        request = JoinByUserRequest.model_validate(data)
        room = self.registry.find_two_party_room(request.current_user_id, request.user_id)
        if room is not None:
            await self.connections.send(connection_id, "room_joined", RoomSummary.from_room(room))
            return

        room = self.registry.create_with_generated_id([request.current_user_id, request.user_id])
        targets = self.connections.connections_for_users(room.members) | {connection_id}
        await self.connections.send_many(targets, "room_created", RoomSummary.from_room(room))

    async def on_send_message(self, connection_id: str, data: Any):
        request = SendMessageRequest.model_validate(data)
        message = self.registry.send(request.room_id, request.user_id, request.message)
        room = self.registry.get_room(request.room_id)
        targets = self.connections.connections_for_users(room.members) | {connection_id}
        minutes_left = self.registry.minutes_left(room.id)
        await self.connections.send_many(targets, "new_message", MessageOut.from_message(message))
        await self.connections.send_many(targets, "room_expiration", minutes_left)

    async def on_get_messages(self, connection_id: str, data: Any):
        room_id = IdentifierPayload.validate_python(data)
        messages = self.registry.messages(room_id)
        response = RoomMessagesResponse(
            room_id=room_id,
            messages=[MessageOut.from_message(message) for message in messages],
        )
        await self.connections.send(connection_id, "room_messages", response)

    async def on_get_room_expiration(self, connection_id: str, data: Any):
        room_id = IdentifierPayload.validate_python(data)
        await self.connections.send(connection_id, "room_expiration", self.registry.minutes_left(room_id))

    async def send_user_rooms(self, connection_id: str, user_id: str):
        summaries = [RoomSummary.from_room(room) for room in self.registry.user_rooms(user_id)]
        await self.connections.send(connection_id, "user_rooms", summaries)

    # Outbound notifications

    def _on_room_deleted(self, room_id: str, members: Set[str]):
        # Broadcast to every connection, not only former members
        task = asyncio.get_running_loop().create_task(self.connections.broadcast("room_deleted", room_id))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        logger.debug(f"Scheduled room_deleted broadcast for room {room_id} ({len(members)} former members)")

    async def drain(self):
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
