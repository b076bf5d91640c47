import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

ROOM_CODE_LENGTH = int(os.getenv("ROOM_CODE_LENGTH", 8))
MAX_ROOM_CODE_LENGTH = int(os.getenv("MAX_ROOM_CODE_LENGTH", 64))
MAX_ROOM_MEMBERS = 2

# Pending server->client events per connection before the oldest is dropped
OUTBOX_SIZE = int(os.getenv("OUTBOX_SIZE", 64))

SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", 300))

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
