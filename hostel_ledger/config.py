"""Application configuration from environment variables."""

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = ConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(
        default="sqlite:///./hostel_ledger.db",
        description="SQLAlchemy connection string",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/server.log", description="Server log file path")

    # Ledger policy
    default_hostel_id: int = Field(
        default=1, description="Hostel used when a request does not name one"
    )
    due_day_of_month: int = Field(
        default=5, ge=1, le=31, description="Day of month rent falls due for new periods"
    )
    due_soon_days: int = Field(
        default=7, ge=0, description="Days before the due date a period counts as due soon"
    )
    max_payment_retries: int = Field(
        default=1, ge=0, description="Retries of a payment after a concurrent modification"
    )
    max_advance_months: int = Field(
        default=12, ge=1, description="Future months an overpayment may be spread across"
    )

    # Client
    api_base_url: str = Field(
        default="http://localhost:8000/api", description="Base URL of the ledger API"
    )
    request_timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")
    cache_ttl_seconds: float = Field(
        default=0, ge=0, description="Client cache expiry in seconds (0 disables expiry)"
    )

    # API
    api_title: str = Field(default="Hostel Ledger API", description="API title")
    api_version: str = Field(default="0.1.0", description="API version")


# Global settings instance
settings = Settings()
