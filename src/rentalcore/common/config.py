"""RentalCore configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "api_key": "insecure-admin-key-change-me",
    "gdpr_encryption_key": "insecure-gdpr-key-change-me",
}


class RentalCoreSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RENTALCORE_")

    environment: str = "development"
    log_level: str = "INFO"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/rentalcore.db"

    # API
    api_title: str = "RentalCore"
    api_version: str = "0.1.0"
    api_key: str = "insecure-admin-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Compliance storage
    archive_dir: str = "./data/archive"
    key_dir: str = "./data/keys"
    company_name: str = "RentalCore"

    # GDPR personal data at rest (AES-256-GCM key is SHA-256 of this secret)
    gdpr_encryption_key: str = "insecure-gdpr-key-change-me"
    gdpr_key_version: str = "v1.0"

    # Retention
    default_retention_years: int = 10
    audit_retention_years: int = 10
    over_retention_grace_months: int = 6
    expiring_soon_days: int = 30

    # Record one audit event per HTTP request
    audit_http_requests: bool = False

    # Job statuses that hold a device for their whole date range
    blocking_job_statuses: list[str] = ["open", "in_progress"]

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"RENTALCORE_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                f"Using insecure default values for {', '.join(insecure_fields)}; "
                "set them via RENTALCORE_* environment variables for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> RentalCoreSettings:
    settings = RentalCoreSettings()
    settings.validate_for_production()
    return settings
