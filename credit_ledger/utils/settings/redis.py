"""Redis settings configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    REDIS_URL: str = "redis://localhost:6379/0"
    # Job locks need a handful of connections at most
    REDIS_MAX_CONNECTIONS: int = 10
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 5.0


__all__ = ["RedisSettings"]
