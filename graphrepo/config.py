"""Settings management for graphrepo.

Configuration is loaded from environment variables (or a ``.env`` file) using
pydantic-settings. Connection credentials have no defaults; they are checked
when a connection is built so a misconfigured process fails at startup.
"""

import logging
from functools import lru_cache

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables.

    Attributes:
        log_level: Logging level.
        neo4j_uri: Neo4j connection URI.
        neo4j_user: Neo4j username.
        neo4j_password: Neo4j password.
        neo4j_database: Neo4j database name.
        neo4j_max_connection_pool_size: Maximum pooled driver connections.
        neo4j_connection_acquisition_timeout: Seconds to wait for a pooled connection.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="INFO", description="Logging level")

    # Neo4j settings
    neo4j_uri: str | None = Field(default=None, description="Neo4j connection URI")
    neo4j_user: str | None = Field(default=None, description="Neo4j username")
    neo4j_password: str | None = Field(default=None, description="Neo4j password")
    neo4j_database: str = Field(default="neo4j", description="Neo4j database name")
    neo4j_max_connection_pool_size: int = Field(
        default=50,
        ge=1,
        description="Maximum connections in the driver pool",
    )
    neo4j_connection_acquisition_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Timeout in seconds for acquiring a pooled connection",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings.

    Uses lru_cache to ensure settings are loaded once and reused.

    Returns:
        The settings instance.
    """
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Filter structlog output below the configured level.

    Args:
        level: Level name such as ``DEBUG``; defaults to ``Settings.log_level``.
    """
    name = (level or get_settings().log_level).upper()
    numeric = getattr(logging, name, None)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(numeric))
