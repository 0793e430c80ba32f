from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    CHAT_WS_URL: str = "ws://localhost:8001/ws"
    CHAT_API_URL: str = "http://localhost:3000/api"
    CHAT_HTTP_TIMEOUT: float = 15.0

    RECONNECT_BASE_DELAY: float = 1.0
    RECONNECT_MAX_DELAY: float = 30.0
    RESYNC_GAP_SECONDS: float = 10.0
    PING_INTERVAL: float = 30.0
    OUTBOX_LIMIT: int = 100

    TYPING_THROTTLE_SECONDS: float = 2.0
    TYPING_QUIET_PERIOD: float = 3.0

    PRESENCE_RECENT_WINDOW: float = 300.0

    CALL_DECLINE_DISPLAY: float = 2.0
    CALL_RING_TIMEOUT: float = 60.0

    MESSAGE_HISTORY_LIMIT: int = 100
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024

    SESSION_TOKEN_SECRET: str = ""
    SESSION_TOKEN_ALGORITHM: str = "HS256"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
