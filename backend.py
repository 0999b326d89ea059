import asyncio
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from constants import ROOM_ID_MAX_ATTEMPTS, ROOM_TTL_SECONDS
from exceptions import InvalidPair, NotRoomMember, RoomAlreadyExists, RoomIdExhausted, RoomNotFound
from logging_config import get_logger
from membership import MembershipIndex
from utils import generate_message_id, generate_room_id

logger = get_logger(__name__)

DeleteListener = Callable[[str, Set[str]], None]


def call_later(delay: float, callback: Callable, *args) -> asyncio.TimerHandle:
    """Default scheduler: a one-shot timer on the running event loop."""
    return asyncio.get_running_loop().call_later(delay, callback, *args)


@dataclass
class Message:
    id: str
    room_id: str
    sender_id: str
    body: str
    timestamp: datetime


@dataclass
class Room:
    id: str
    members: Set[str]
    created_at: datetime
    # Deadline on the registry clock (monotonic), not a wall-clock time
    expires_at: float
    messages: List[Message] = field(default_factory=list)
    expiration_handle: Any = None
    # Bumped on every rearm so a stale countdown can recognise itself
    generation: int = 0

    @property
    def user_count(self) -> int:
        return len(self.members)


class RoomRegistry:
    """In-memory owner of live rooms, their message logs and expiry countdowns.

    Every membership change goes through this class so the room member sets
    and the membership index never disagree.
    """

    def __init__(
        self,
        ttl_seconds: float = ROOM_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Callable[..., Any] = call_later,
        room_id_factory: Callable[[], str] = generate_room_id,
        max_id_attempts: int = ROOM_ID_MAX_ATTEMPTS,
    ):
        self.ttl_seconds = ttl_seconds
        self.membership = MembershipIndex()
        self._rooms: Dict[str, Room] = {}
        self._clock = clock
        self._scheduler = scheduler
        self._room_id_factory = room_id_factory
        self._max_id_attempts = max_id_attempts
        self._delete_listeners: List[DeleteListener] = []
        logger.info(f"Initializing RoomRegistry with TTL {ttl_seconds} seconds")

    # Lookups

    def get_room(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    def rooms_of(self, user_id: str) -> Set[str]:
        return self.membership.rooms_of(user_id)

    def user_rooms(self, user_id: str) -> List[Room]:
        return [self._rooms[room_id] for room_id in sorted(self.membership.rooms_of(user_id))]

    def messages(self, room_id: str) -> List[Message]:
        return list(self.get_room(room_id).messages)

    def remaining_ttl(self, room_id: str) -> float:
        room = self.get_room(room_id)
        return max(0.0, room.expires_at - self._clock())

    def minutes_left(self, room_id: str) -> int:
        return math.ceil(self.remaining_ttl(room_id) / 60)

    def __len__(self) -> int:
        return len(self._rooms)

    # Mutations

    def create(self, room_id: str, member_ids: Iterable[str]) -> Room:
        if room_id in self._rooms:
            logger.warning(f"Room creation rejected: {room_id} already exists")
            raise RoomAlreadyExists(room_id)

        room = Room(
            id=room_id,
            members=set(member_ids),
            created_at=datetime.now(timezone.utc),
            expires_at=0.0,
        )
        self._arm(room)

        self._rooms[room_id] = room
        for user_id in room.members:
            self.membership.add_membership(user_id, room_id)

        logger.info(f"Room {room_id} created with {room.user_count} members")
        return room

    def create_with_generated_id(self, member_ids: Iterable[str]) -> Room:
        member_ids = list(member_ids)
        for attempt in range(1, self._max_id_attempts + 1):
            room_id = self._room_id_factory()
            try:
                return self.create(room_id, member_ids)
            except RoomAlreadyExists:
                logger.debug(f"Generated room ID {room_id} collided (attempt {attempt})")
        raise RoomIdExhausted(detail=f"No free room ID after {self._max_id_attempts} attempts")

    def join(self, room_id: str, user_id: str) -> Room:
        room = self.get_room(room_id)
        if user_id not in room.members:
            room.members.add(user_id)
            self.membership.add_membership(user_id, room_id)
            logger.debug(f"User {user_id} joined room {room_id} ({room.user_count} members)")
        else:
            logger.debug(f"User {user_id} already in room {room_id}")
        self._arm(room)
        return room

    def find_two_party_room(self, user_a: str, user_b: str) -> Optional[Room]:
        """Return the room whose members are exactly these two users, if any.

        Shared room ids are scanned in sorted order, so repeated lookups agree.
        A user cannot be paired with themselves.
        """
        if user_a == user_b:
            raise InvalidPair(detail=f"Cannot open a two-party room for {user_a} with themselves")
        shared = self.membership.rooms_of(user_a) & self.membership.rooms_of(user_b)
        pair = {user_a, user_b}
        for room_id in sorted(shared):
            room = self._rooms.get(room_id)
            if room is not None and len(room.members) == 2 and room.members == pair:
                return room
        return None

    def send(self, room_id: str, user_id: str, body: str) -> Message:
        room = self.get_room(room_id)
        if user_id not in room.members:
            logger.warning(f"User {user_id} tried to send to room {room_id} without membership")
            raise NotRoomMember(room_id)

        message = Message(
            id=generate_message_id(),
            room_id=room_id,
            sender_id=user_id,
            body=body,
            timestamp=datetime.now(timezone.utc),
        )
        room.messages.append(message)
        self._arm(room)
        logger.debug(f"Message {message.id} from {user_id} stored in room {room_id}")
        return message

    def reset_expiration(self, room_id: str) -> Room:
        room = self.get_room(room_id)
        self._arm(room)
        return room

    def delete(self, room_id: str) -> Optional[Room]:
        room = self._rooms.get(room_id)
        if room is None:
            return None

        for user_id in room.members:
            self.membership.remove_membership(user_id, room_id)
        self._cancel(room)
        del self._rooms[room_id]
        logger.info(f"Room {room_id} deleted")

        members = set(room.members)
        for listener in list(self._delete_listeners):
            listener(room_id, members)
        return room

    def add_delete_listener(self, listener: DeleteListener):
        self._delete_listeners.append(listener)

    def close(self):
        """Cancel every countdown and forget all rooms without notifying anyone."""
        for room in self._rooms.values():
            self._cancel(room)
        self._rooms.clear()
        self.membership = MembershipIndex()
        logger.info("RoomRegistry closed")

    # Countdown

    def _arm(self, room: Room):
        # Schedule first so a failing scheduler leaves the previous countdown intact
        generation = room.generation + 1
        handle = self._scheduler(self.ttl_seconds, self._expire, room.id, generation)
        self._cancel(room)
        room.generation = generation
        room.expiration_handle = handle
        room.expires_at = self._clock() + self.ttl_seconds
        logger.debug(f"Room {room.id} countdown armed for {self.ttl_seconds} seconds")

    def _cancel(self, room: Room):
        if room.expiration_handle is not None:
            room.expiration_handle.cancel()
            room.expiration_handle = None

    def _expire(self, room_id: str, generation: int):
        room = self._rooms.get(room_id)
        if room is None or room.generation != generation:
            logger.debug(f"Ignoring stale countdown for room {room_id}")
            return
        logger.info(f"Room {room_id} expired after {self.ttl_seconds} seconds of inactivity")
        self.delete(room_id)
