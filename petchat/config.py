from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Environment variables take precedence over the .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "petchat"

    # Credentials are issued by the auth service; we only verify them
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60 * 24 * 7

    LOG_LEVEL: str = "INFO"

    # Realtime gateway
    WS_REGISTER_TIMEOUT_SECONDS: float = 10.0
    WS_OUTBOUND_QUEUE_SIZE: int = 256

    MESSAGE_PREVIEW_LENGTH: int = 200
    MESSAGE_MAX_LENGTH: int = 2000

    AVATAR_BASE_URL: str = "http://localhost:8000"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
