"""Application configuration from environment variables."""

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(
        default="sqlite:///./meter_cycles.db",
        description="SQLAlchemy connection string",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Upstream services
    unit_directory_url: str = Field(
        default="http://localhost:8081", description="Base URL of the unit directory service"
    )
    meter_registry_url: str = Field(
        default="http://localhost:8081", description="Base URL of the meter registry service"
    )
    invoice_service_url: str = Field(
        default="http://localhost:8081", description="Base URL of the invoice export service"
    )
    upstream_timeout_seconds: float = Field(
        default=10.0, description="Timeout applied to every upstream HTTP call"
    )

    # Domain
    allowed_services: list[str] = Field(
        default=["WATER", "ELECTRIC"], description="Service ids a reading cycle may target"
    )
    inactive_unit_statuses: list[str] = Field(
        default=["INACTIVE"], description="Unit statuses excluded from billing"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/server.log", description="Server log file path")

    # API
    api_title: str = Field(default="Meter Cycles API", description="API title")
    api_version: str = Field(default="0.1.0", description="API version")


def load_env_file(env_path: Path = Path(".env")) -> bool:
    """Export .env entries into os.environ, keeping variables already set.

    Settings reads the same file itself; this makes the values visible to
    plain os.getenv readers such as the LOG_LEVEL lookup in logging setup.
    """
    if env_path.exists():
        return load_dotenv(env_path)
    return False


# Load .env before the settings instance is built
load_env_file()

# Global settings instance
settings = Settings()
