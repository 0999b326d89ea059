from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, HTTPException, Request

from exceptions import RoomNotFound
from logging_config import get_logger
from schemas.rooms import (
    MessageOut,
    RoomDetailsResponse,
    RoomExpirationResponse,
    RoomMessagesResponse,
    RoomSummary,
)

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])
users_router = APIRouter(prefix="/users", tags=["users"])


def get_room_or_404(request: Request, room_id: str):
    try:
        return request.app.state.registry.get_room(room_id)
    except RoomNotFound:
        logger.warning(f"Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse, response_model_by_alias=True)
async def get_room_details(room_id: str, request: Request):
    """
    Get room details.

    Returns:
    - id: Room code
    - userCount: Number of members
    - createdAt / expiresAt: Creation time and current expiry deadline
    - minutesLeft: Whole minutes until expiry, rounded up
    - messageCount: Number of stored messages
    """
    registry = request.app.state.registry
    room = get_room_or_404(request, room_id)
    logger.info(f"Room details retrieved for {room_id}: {room.user_count} members")
    return RoomDetailsResponse(
        id=room.id,
        user_count=room.user_count,
        created_at=room.created_at,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=registry.remaining_ttl(room_id)),
        minutes_left=registry.minutes_left(room_id),
        message_count=len(room.messages),
    )


@rooms_router.get("/{room_id}/messages", response_model=RoomMessagesResponse, response_model_by_alias=True)
async def get_room_messages(room_id: str, request: Request):
    room = get_room_or_404(request, room_id)
    return RoomMessagesResponse(
        room_id=room.id,
        messages=[MessageOut.from_message(message) for message in room.messages],
    )


@rooms_router.get("/{room_id}/expiration", response_model=RoomExpirationResponse, response_model_by_alias=True)
async def get_room_expiration(room_id: str, request: Request):
    registry = request.app.state.registry
    get_room_or_404(request, room_id)
    return RoomExpirationResponse(
        room_id=room_id,
        seconds_left=registry.remaining_ttl(room_id),
        minutes_left=registry.minutes_left(room_id),
    )


@users_router.get("/{user_id}/rooms", response_model=list[RoomSummary], response_model_by_alias=True)
async def get_user_rooms(user_id: str, request: Request):
    rooms = request.app.state.registry.user_rooms(user_id)
    return [RoomSummary.from_room(room) for room in rooms]
