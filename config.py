from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Contact reconciliation service settings, read from the environment."""

    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
    )

    APP_NAME: str = Field(
        default="Bitespeed Contact Reconciliation API",
        description="Service title shown in the OpenAPI docs",
    )
    APP_VERSION: str = Field(default="1.0.0", description="Service version")
    DB_NAME: str = Field(
        default="contacts.db",
        description="Path of the SQLite database holding the Contact table",
    )
    HOST: str = Field(default="0.0.0.0", description="Host to bind to")
    PORT: int = Field(default=8000, description="Port to bind to")
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
