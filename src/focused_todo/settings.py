from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "focused-todo"  # Application name constant. Should be in format "kebab-case".


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix=f"{APP_NAME.upper().replace('-', '_')}__",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = Field(default=APP_NAME, description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    app_data_dir: str = Field(
        default=Path.home().joinpath(f".{APP_NAME}").as_posix(),
        description="Data directory path",
    )

    # HTTP server settings
    host: str = Field(default="127.0.0.1", description="Interface the API binds to")
    port: int = Field(default=8080, ge=1, le=65535, description="API port")
    max_body_bytes: int = Field(
        default=10 * 1024 * 1024, description="Maximum accepted request body size"
    )
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"],
        description="Origins allowed to call the API from a browser",
    )
    shutdown_timeout_seconds: float = Field(
        default=30.0, description="Time to wait for in-flight requests on shutdown"
    )

    # Rate limiting
    rate_limit_requests: int = Field(
        default=100, ge=1, description="Requests allowed per client within one window"
    )
    rate_limit_window_seconds: float = Field(
        default=60.0, gt=0, description="Rate limit window length"
    )
    rate_limit_sweep_seconds: float = Field(
        default=60.0, gt=0, description="Interval between stale client sweeps"
    )

    # Database settings
    database_path: str | None = Field(
        default=None,
        description="SQLite database file. Defaults to data.db inside the data directory",
    )
    database_pool_size: int = Field(default=5, ge=1, description="Connection pool size")
    database_max_overflow: int = Field(
        default=5, ge=0, description="Connections allowed beyond the pool size"
    )
    database_busy_timeout_ms: int = Field(
        default=5000, ge=0, description="SQLite busy timeout in milliseconds"
    )

    # Logging settings
    logging_level: str = Field(
        default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING, ERROR)"
    )
    logging_format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>:<cyan>{line}</cyan> - <level>{message}</level> | {extra}",
        description="Logging format string",
    )
    logging_to_file: bool = Field(
        default=True, description="Also write logs to a rotating file in the data directory"
    )
    logging_rotation: str = Field(
        default="10 MB", description="Log file rotation size"
    )
    logging_retention: str = Field(
        default="10 days", description="Log file retention period"
    )
    logging_compression: str = Field(
        default="zip", description="Log file compression method"
    )

    @field_validator("logging_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def resolved_database_path(self) -> Path:
        if self.database_path:
            return Path(self.database_path).expanduser()
        return Path(self.app_data_dir).expanduser() / "data.db"

    @property
    def log_file_path(self) -> Path:
        return Path(self.app_data_dir).expanduser() / "logs" / f"{self.app_name}.log"


def get_settings() -> Settings:
    """Retrieve application settings."""
    return Settings()
