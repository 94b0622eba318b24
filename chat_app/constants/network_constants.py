"""Network configuration constants for the chat server."""

import os

DEFAULT_HOST: str = os.environ.get("HOST", "0.0.0.0")
DEFAULT_PORT: int = int(os.environ.get("PORT", "3001"))

DEFAULT_ALLOWED_ORIGINS: list[str] = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
ALLOWED_ORIGINS: list[str] = DEFAULT_ALLOWED_ORIGINS + [
    origin.strip()
    for origin in os.environ.get("ALLOWED_ORIGINS", "").split(",")
    if origin.strip()
]
WEBSOCKET_PATH: str = "/ws"
