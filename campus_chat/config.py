import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):

    mongo_url: str = Field(default="mongodb://localhost:27017")
    mongo_db: str = Field(default="campus_lost_found")
    redis_url: Optional[str] = None
    jwt_secret: str = Field(default="dev-secret-change-me-0123456789abcdef")
    jwt_algorithm: str = Field(default="HS256")
    jwt_audience: Optional[str] = None
    message_max_length: int = Field(default=1000, ge=1)
    typing_timeout_ms: int = Field(default=1000, ge=1)
    presence_ttl_seconds: int = Field(default=60, ge=1)
    log_level: str = Field(default="INFO")

    @property
    def typing_timeout(self) -> float:
        return self.typing_timeout_ms / 1000.0


@lru_cache
def get_settings() -> Settings:
    load_dotenv()
    values = {
        "mongo_url": os.getenv("MONGO_URL"),
        "mongo_db": os.getenv("MONGO_DB"),
        "redis_url": os.getenv("REDIS_URL") or None,
        "jwt_secret": os.getenv("JWT_SECRET"),
        "jwt_algorithm": os.getenv("JWT_ALGORITHM"),
        "jwt_audience": os.getenv("JWT_AUDIENCE") or None,
        "message_max_length": os.getenv("MESSAGE_MAX_LENGTH"),
        "typing_timeout_ms": os.getenv("TYPING_TIMEOUT_MS"),
        "presence_ttl_seconds": os.getenv("PRESENCE_TTL_SECONDS"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    # unset variables fall back to the model defaults
    return Settings(**{k: v for k, v in values.items() if v is not None})
