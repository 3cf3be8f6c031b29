"""Runtime settings for the sync server.

Every field can be overridden with an environment variable carrying the
``DEVCONTEXT_`` prefix, e.g. ``DEVCONTEXT_JWT_SECRET``.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Sync server settings."""

    model_config = SettingsConfigDict(env_prefix="DEVCONTEXT_")

    server_db: str = Field(
        default="~/.devcontext/server.db",
        description="Path of the server SQLite database",
    )
    jwt_secret: str = Field(
        default="change-me-in-production",
        description="Secret used to sign bearer tokens",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    token_ttl_days: int = Field(default=30, description="Lifetime of issued tokens in days")


@lru_cache
def get_settings() -> ServerSettings:
    """Return the process-wide server settings."""
    return ServerSettings()
