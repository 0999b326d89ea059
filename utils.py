"""
Utility functions for ID generation
"""
import random
import string
import uuid

from constants import ROOM_ID_DIGITS, ROOM_ID_LETTERS


def generate_room_id(rng: random.Random = None) -> str:
    """Generate a short shareable room code: two letters then two digits, e.g. "QX42"."""
    rng = rng or random
    letters = "".join(rng.choice(string.ascii_uppercase) for _ in range(ROOM_ID_LETTERS))
    digits = "".join(rng.choice(string.digits) for _ in range(ROOM_ID_DIGITS))
    return letters + digits


def generate_message_id() -> str:
    return uuid.uuid4().hex


def generate_connection_id() -> str:
    return str(uuid.uuid4())
