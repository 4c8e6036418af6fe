# src/async_orm/config.py
import logging
import os
from typing import Any, Dict, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

log = logging.getLogger(__name__)


class PostgresConfig(BaseModel):
    """Connection and pool settings for the asyncpg executor."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: Optional[str] = Field(default=None, repr=False)
    database: str = "postgres"
    min_size: int = 1
    max_size: int = 10
    max_inactive_connection_lifetime: float = 300.0
    command_timeout: Optional[float] = None

    @field_validator("host", "user", "database")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("value cannot be empty")
        return v.strip()

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("min_size")
    @classmethod
    def validate_min_size(cls, v: int) -> int:
        if v < 0:
            raise ValueError("min_size cannot be negative")
        return v

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_size must be at least 1")
        return v

    @field_validator("max_inactive_connection_lifetime", "command_timeout")
    @classmethod
    def validate_seconds(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("timeouts cannot be negative")
        return v

    @model_validator(mode="after")
    def validate_pool_bounds(self) -> "PostgresConfig":
        if self.min_size > self.max_size:
            raise ValueError("min_size cannot exceed max_size")
        return self

    @property
    def dsn(self) -> str:
        credentials = quote(self.user, safe="")
        if self.password:
            credentials += f":{quote(self.password, safe='')}"
        database = quote(self.database, safe="")
        return f"postgresql://{credentials}@{self.host}:{self.port}/{database}"

    def pool_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for `asyncpg.create_pool`."""
        return {
            "dsn": self.dsn,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "max_inactive_connection_lifetime": self.max_inactive_connection_lifetime,
            "command_timeout": self.command_timeout,
        }

    @classmethod
    def from_env(cls, prefix: str = "ASYNC_ORM_PG_") -> "PostgresConfig":
        """
        Build a config from environment variables.

        Each field is read from `<prefix><FIELD NAME>` (e.g.
        `ASYNC_ORM_PG_HOST`); unset variables keep the field default.
        """
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw is not None:
                values[name] = raw
        log.debug(f"Loaded PostgresConfig fields from environment: {sorted(values)}")
        return cls(**values)
