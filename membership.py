from typing import Dict, Set

from logging_config import get_logger

logger = get_logger(__name__)


class MembershipIndex:
    """Reverse index from user id to the ids of the rooms that user belongs to.

    Only room ids are stored here; the room objects themselves belong to the
    registry, which is the only caller of the mutation methods.
    """

    def __init__(self):
        self._rooms_by_user: Dict[str, Set[str]] = {}

    def rooms_of(self, user_id: str) -> Set[str]:
        """Return a copy of the user's room ids (empty for unknown users)."""
        return set(self._rooms_by_user.get(user_id, ()))

    def add_membership(self, user_id: str, room_id: str):
        self._rooms_by_user.setdefault(user_id, set()).add(room_id)
        logger.debug(f"Indexed user {user_id} in room {room_id}")

    def remove_membership(self, user_id: str, room_id: str):
        room_ids = self._rooms_by_user.get(user_id)
        if room_ids is None:
            return
        room_ids.discard(room_id)
        if not room_ids:
            del self._rooms_by_user[user_id]
            logger.debug(f"Pruned membership entry for user {user_id}")

    def users(self) -> Set[str]:
        return set(self._rooms_by_user)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._rooms_by_user

    def __len__(self) -> int:
        return len(self._rooms_by_user)
