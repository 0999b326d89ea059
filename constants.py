import os

ROOM_EXPIRATION_MINUTES = float(os.getenv("ROOM_EXPIRATION_MINUTES", 5))
ROOM_TTL_SECONDS = ROOM_EXPIRATION_MINUTES * 60

# Bounded regeneration when a generated room code collides with a live room
ROOM_ID_MAX_ATTEMPTS = int(os.getenv("ROOM_ID_MAX_ATTEMPTS", 20))

ROOM_ID_LETTERS = 2
ROOM_ID_DIGITS = 2

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3000))

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)
