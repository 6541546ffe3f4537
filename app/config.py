from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str

    # Security
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 24 hours

    # Redis
    redis_url: str = ""  # Optional Redis URL bridging the message feed across instances
    message_feed_channel: str = "messages:inserts"

    # Push notifications
    push_function_url: str = ""  # Empty disables push
    push_api_key: str = ""
    push_timeout: float = 10.0
    push_preview_length: int = 80

    # Unread reminders
    unread_reminder_enabled: bool = False
    unread_reminder_delay_min: int = 60
    unread_reminder_interval_min: int = 15

    # CORS - include both local and production origins
    cors_origins: list[str] = [
        "http://localhost:5173",
        "https://djassa.tech",
        "https://www.djassa.tech",
    ]

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
