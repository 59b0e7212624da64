"""Configuration management for the library circulation backend.

Settings are loaded from the environment (``LIBRARY_`` prefix) and an optional
``.env`` file, and validated with Pydantic v2:

1. Service metadata - name and version reported by the server
2. Persistence - SQLite path or a full SQLAlchemy URL
3. Security - JWT signing and password hashing parameters
4. Runtime - transport, logging and tracing
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LibraryConfig(BaseSettings):
    """Library backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Service Metadata ===

    server_name: str = Field(
        default="library-circulation",
        description="Service name reported to clients",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Service version",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/library.db"),
        description="SQLite database file path (used when database_url is unset)",
    )

    database_url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL, e.g. postgresql+psycopg://user:pw@host/db",
        repr=False,
    )

    sqlite_busy_timeout: float = Field(
        default=30.0,
        description="Seconds a SQLite writer waits for the database lock",
        gt=0,
    )

    # === Security Configuration ===

    jwt_secret: str = Field(
        default="change-me-in-production",
        description="HMAC secret used to sign access tokens",
        min_length=8,
        repr=False,
    )

    jwt_algorithm: str = Field(
        default="HS256",
        pattern=r"^HS(256|384|512)$",
    )

    jwt_expiry_minutes: int = Field(
        default=24 * 60,
        description="Access token lifetime",
        ge=1,
    )

    bcrypt_rounds: int = Field(
        default=12,
        description="bcrypt work factor for stored passwords",
        ge=4,
        le=16,
    )

    min_password_length: int = Field(default=6, ge=1)

    # === Circulation Defaults ===

    default_membership_type: str = Field(
        default="STANDARD",
        description="Membership type assigned to self-registered students",
    )

    # === Transport Configuration ===

    transport: str = Field(
        default="stdio",
        pattern=r"^(stdio|streamable_http)$",
    )

    http_host: str = Field(default="127.0.0.1")

    http_port: int = Field(default=8080, ge=1024, le=65535)

    # === Runtime Configuration ===

    environment: str = Field(
        default="development",
        pattern=r"^(development|test|production)$",
    )

    debug: bool = Field(default=False)

    log_level: str = Field(
        default="INFO",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    logfire_token: str | None = Field(
        default=None,
        description="Logfire write token; spans stay local when unset",
        repr=False,
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve to an absolute path and make sure the directory exists."""
        abs_path = v.absolute()
        abs_path.parent.mkdir(parents=True, exist_ok=True)
        if not abs_path.parent.is_dir():
            raise ValueError(f"Database directory {abs_path.parent} is not accessible")
        return abs_path

    @field_validator("server_name")
    @classmethod
    def validate_server_name(cls, v: str) -> str:
        if len(v) < 3:
            raise ValueError("Server name must be at least 3 characters")
        if len(v) > 50:
            raise ValueError("Server name must not exceed 50 characters")
        return v

    @field_validator("default_membership_type")
    @classmethod
    def normalize_membership_type(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def is_development(self) -> bool:
        return self.debug or self.log_level == "DEBUG"

    @property
    def server_info(self) -> dict[str, str]:
        return {
            "name": self.server_name,
            "version": self.server_version,
            "transport": self.transport,
        }

    def get_database_url(self) -> str:
        """Get the SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.database_path}"


class _ConfigStore:
    """Internal storage for the configuration singleton."""

    _instance: LibraryConfig | None = None


def get_config() -> LibraryConfig:
    """Get or create the process configuration."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = LibraryConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Drop the cached configuration (used by tests)."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
