"""
Configuration management for ModuleDbHub.

This module provides environment-based configuration using Pydantic BaseSettings,
allowing for flexible deployment across development, testing, and production
environments while maintaining secure credential management.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for resolving .env by default
PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_ENV_FILE = PROJECT_ROOT / ".env"
ENV_FILE_OVERRIDE = os.getenv("MDH_ENV_FILE")
if ENV_FILE_OVERRIDE:
    env_file_candidate = Path(ENV_FILE_OVERRIDE).expanduser()
    if not env_file_candidate.is_absolute():
        env_file_candidate = PROJECT_ROOT / env_file_candidate
    SETTINGS_ENV_FILE = env_file_candidate
else:
    SETTINGS_ENV_FILE = DEFAULT_ENV_FILE

# Shipped with the package so bootstrap works from any working directory
DEFAULT_RESERVED_NAMES_FILE = Path(__file__).resolve().parent / "reserved_names.yml"

# Schemas owned by PostgreSQL or the platform itself
BUILTIN_PROTECTED_SCHEMAS = (
    "public",
    "auth",
    "storage",
    "extensions",
    "pg_catalog",
    "information_schema",
    "pg_toast",
)


class DatabaseSettings:
    """
    Database settings compatibility layer for unified DSN retrieval.

    Supports both component-based and URI-based connection strings.
    """

    def __init__(
        self,
        host: str,
        port: int = 5432,
        user: str = "",
        password: str = "",
        db: str = "",
        uri: Optional[str] = None,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.db = db
        self.uri = uri

    def get_connection_string(self) -> str:
        """Return the URI if configured, otherwise assemble one from components."""
        if self.uri:
            return self.uri
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Environment variables are loaded with the MDH_ prefix, for example
    MDH_PLATFORM_SCHEMA overrides ``platform_schema``. ENVIRONMENT and
    LOG_LEVEL are read without prefix.
    """

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        validation_alias="ENVIRONMENT",
        description="Deployment environment",
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Logging level (uppercase)",
    )
    log_to_file: bool = Field(
        default=False,
        description="Also write logs to a daily rotating file",
    )
    log_file_dir: str = Field(
        default="logs",
        description="Directory for rotating log files",
    )
    DB_POOL_SIZE: int = Field(
        default=5,
        validation_alias="DB_POOL_SIZE",
        description="Database connection pool size",
    )

    app_name: str = Field(default="ModuleDbHub", description="Application name")

    # Database configuration
    database_host: str = Field(default="localhost", description="Database host")
    database_port: int = Field(default=5432, description="Database port")
    database_user: str = Field(default="postgres", description="Database user")
    database_password: str = Field(default="", description="Database password")
    database_db: str = Field(default="platform", description="Database name")
    database_uri: Optional[str] = Field(
        default=None,
        description="Complete database URI",
        validation_alias=AliasChoices(
            "MDH_DATABASE__URI", "MDH_DATABASE_URI", "DATABASE_URL"
        ),
    )

    # Namespaces
    platform_schema: str = Field(
        default="public",
        description="Shared schema that holds prefixed module tables",
    )
    registry_schema: Optional[str] = Field(
        default="public",
        description="Schema holding the module registry tables (None = default)",
    )
    protected_schemas: List[str] = Field(
        default_factory=list,
        description="Additional schemas modules may never create, alter or drop",
    )

    # Naming
    reserved_names_config: str = Field(
        default=str(DEFAULT_RESERVED_NAMES_FILE),
        description="Path to the reserved names YAML file",
    )
    identifier_max_length: int = Field(
        default=63,
        description="Maximum identifier length accepted by the database",
    )

    # Tenant isolation
    default_tenant_column: str = Field(
        default="site_id",
        description="Tenant column assumed when a table does not declare one",
    )
    tenant_scope_setting: str = Field(
        default="app.tenant_ids",
        description="Session setting carrying the caller's authorized tenant ids",
    )
    app_role: str = Field(
        default="authenticated",
        description="Role granted DML on module tables (subject to policies)",
    )
    service_role: str = Field(
        default="service_role",
        description="Role granted full access to module objects",
    )

    # Per-module serialization
    lock_wait_timeout_seconds: float = Field(
        default=30.0,
        description="How long a provision waits for a concurrent one to finish",
    )
    lock_poll_interval_seconds: float = Field(
        default=0.5,
        description="Polling interval while waiting for a module lock",
    )
    lock_stale_after_seconds: float = Field(
        default=3600.0,
        description="Age after which an abandoned module lock may be taken over",
    )

    @field_validator("lock_wait_timeout_seconds", "lock_poll_interval_seconds")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("lock timings must be non-negative")
        return value

    @property
    def database(self) -> DatabaseSettings:
        """Database settings compatibility wrapper."""
        return DatabaseSettings(
            host=self.database_host,
            port=self.database_port,
            user=self.database_user,
            password=self.database_password,
            db=self.database_db,
            uri=self.database_uri,
        )

    @property
    def all_protected_schemas(self) -> frozenset:
        """Built-in protected schemas plus configured extras, lowercased."""
        schemas = set(BUILTIN_PROTECTED_SCHEMAS)
        schemas.update(s.lower() for s in self.protected_schemas)
        schemas.add(self.platform_schema.lower())
        if self.registry_schema:
            schemas.add(self.registry_schema.lower())
        return frozenset(schemas)

    def get_database_connection_string(self) -> str:
        """Get the database connection string.

        Automatically corrects 'postgres://' scheme to 'postgresql://' for
        SQLAlchemy compatibility.
        """
        final_uri = self.database.get_connection_string()
        if final_uri.startswith("postgres://"):
            final_uri = final_uri.replace("postgres://", "postgresql://", 1)
        return final_uri

    @model_validator(mode="after")
    def validate_production_database_url(self) -> "Settings":
        """Validate that production environment uses PostgreSQL.

        Row level security and schema-per-module isolation rely on PostgreSQL,
        so production deployments may not point at anything else.

        Raises:
            ValueError: If ENVIRONMENT is 'prod' and database URL is not PostgreSQL
        """
        db_url = self.get_database_connection_string()

        if self.ENVIRONMENT == "prod" and not db_url.startswith("postgresql"):
            db_url_preview = db_url[:20]
            raise ValueError(
                "Production environment requires PostgreSQL database. "
                f"Database URL must start with 'postgresql', "
                f"got: {db_url_preview}..."
            )

        return self

    model_config = SettingsConfigDict(
        env_prefix="MDH_",
        env_file=str(SETTINGS_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once and reused across the process lifecycle.

    Returns:
        Settings instance with loaded configuration
    """
    return Settings()
