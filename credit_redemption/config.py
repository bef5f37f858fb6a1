"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Redemption pipeline settings loaded from environment variables."""

    # Ledger (credit proxy) Configuration
    ledger_base_url: str = "https://inputmax-proxy.inputmax.workers.dev"
    request_timeout_seconds: float = 30.0

    # Device identity - override wins over the persisted id
    device_id: str | None = None
    device_id_path: Path = Path.home() / ".credit_redemption" / "device_id"

    # Redemption protocols
    signed_protocol_enabled: bool = True  # Disable on platforms without JWS support
    legacy_protocol_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    service_name: str = "credit-redemption"
    service_version: str = "0.1.0"
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True

    model_config = SettingsConfigDict(
        env_prefix="CREDIT_REDEMPTION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        A pipeline with no reachable ledger or no redemption protocol would
        leave every purchase unfinished forever.
        """
        errors: list[str] = []

        if not self.ledger_base_url:
            errors.append("LEDGER_BASE_URL is required but empty or missing")
        elif not self.ledger_base_url.startswith(("http://", "https://")):
            errors.append(
                f"LEDGER_BASE_URL must be an http(s) URL, got: {self.ledger_base_url[:20]}..."
            )

        if not (self.signed_protocol_enabled or self.legacy_protocol_enabled):
            errors.append("At least one redemption protocol must be enabled")

        if self.request_timeout_seconds <= 0:
            errors.append(f"REQUEST_TIMEOUT_SECONDS must be positive: {self.request_timeout_seconds}")

        if self.log_format not in ("json", "console"):
            errors.append(f"LOG_FORMAT must be 'json' or 'console', got: {self.log_format}")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - PIPELINE CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


@lru_cache
def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()
