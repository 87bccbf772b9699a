from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Application settings, read from environment variables (and a local .env file).
# JWT_SECRET has no default: the server refuses to start without one.
class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT")
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Storage
    database_url: str = Field(default="sqlite:///./qa_todo.db", alias="DATABASE_URL")

    # Auth
    jwt_secret: str = Field(alias="JWT_SECRET", min_length=1)
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    token_expire_hours: int = Field(default=24, alias="TOKEN_EXPIRE_HOURS", gt=0)
    bcrypt_rounds: int = Field(default=10, alias="BCRYPT_ROUNDS", ge=4, le=31)

    # Todos
    max_title_length: int = Field(default=100, alias="MAX_TITLE_LENGTH", gt=0)


@lru_cache
def get_settings() -> Settings:
    return Settings()
