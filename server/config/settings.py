"""Application configuration settings."""
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import model_validator
from typing import List

# Get the server directory path
SERVER_DIR = Path(__file__).parent.parent
HOME_DIR = Path.home()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Authoritative store (opened read-only)
    CHAT_DB_PATH: str = str(HOME_DIR / "Library" / "Messages" / "chat.db")

    # Command bridge mailbox
    COMMAND_PATH: str = str(HOME_DIR / ".webmessages-cmd.json")
    RESPONSE_PATH: str = str(HOME_DIR / ".webmessages-resp.json")
    BRIDGE_PROCESS_NAME: str = "imcore-bridge"
    BRIDGE_POLL_INTERVAL_MS: int = 100
    BRIDGE_LIVENESS_INTERVAL_MS: int = 1000
    BRIDGE_DEFAULT_TIMEOUT_MS: int = 8000
    BRIDGE_LONG_TIMEOUT_MS: int = 15000

    # Scheduled-message CLI bridge
    SCHEDULE_BRIDGE_PATH: str = "imcore-bridge"
    SCHEDULE_BRIDGE_TIMEOUT_S: int = 15

    # Change watcher
    WATCHER_INTERVAL_S: float = 2.0
    CURSOR_PATH: str = str(SERVER_DIR / "data" / "sync_cursor.json")

    # Effect verification (poll the store after each command)
    VERIFY_TIMEOUT_MS: int = 7000
    VERIFY_POLL_MS: int = 250

    # Edit / unsend windows (seconds since the message was sent)
    EDIT_WINDOW_S: int = 900
    UNSEND_WINDOW_S: int = 120

    # Pinned conversations
    PINNING_PLIST_PATH: str = str(
        HOME_DIR / "Library" / "Preferences" / "com.apple.messages.pinning.plist"
    )

    # Server
    HOST: str = "127.0.0.1"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # CORS: explicit list of allowed origins
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    @model_validator(mode="after")
    def _validate_timings(self) -> "Settings":
        if self.VERIFY_POLL_MS <= 0 or self.BRIDGE_POLL_INTERVAL_MS <= 0:
            raise ValueError("Poll intervals must be positive")
        if self.VERIFY_POLL_MS > self.VERIFY_TIMEOUT_MS:
            raise ValueError("VERIFY_POLL_MS must not exceed VERIFY_TIMEOUT_MS")
        if self.WATCHER_INTERVAL_S <= 0:
            raise ValueError("WATCHER_INTERVAL_S must be positive")
        return self

    class Config:
        env_file = str(SERVER_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()
