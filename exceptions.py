class RoomError(Exception):
    """Base class for expected, user-facing room failures."""

    kind = "room_error"
    default_detail = "Room operation failed"

    def __init__(self, room_id=None, detail=None):
        self.room_id = room_id
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class RoomAlreadyExists(RoomError):
    kind = "already_exists"
    default_detail = "A room with this ID already exists"


class RoomNotFound(RoomError):
    kind = "not_found"
    default_detail = "Room not found"


class NotRoomMember(RoomError):
    kind = "not_member"
    default_detail = "You are not a member of this room"


class InvalidPair(RoomError):
    kind = "invalid_pair"
    default_detail = "A two-party room needs two different users"


class RoomIdExhausted(RoomError):
    kind = "room_id_exhausted"
    default_detail = "Could not allocate a free room ID"
