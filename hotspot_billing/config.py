"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


def _url_errors(name: str, value: str) -> list[str]:
    if not value:
        return [f"{name} is required but empty or missing"]
    if not value.startswith(("http://", "https://")):
        return [f"{name} must be an http(s) URL, got: {value[:20]}..."]
    return []


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Hotspot Billing API"
    api_version: str = "0.1.0"
    api_description: str = "M-Pesa paid WiFi access for hotspot clients"
    environment: str = "development"  # development | staging | production

    # Payment backend (STK push + verification) - NO DEFAULT for production safety
    api_base_url: str = ""
    stk_push_path: str = "/stkpush"
    verify_payment_path: str = "/verify-payment"

    # Access controller proxy - credential stays on this service
    access_controller_url: str = ""
    access_controller_username: str = ""
    access_controller_password: str = ""

    # Outbound call bounds
    request_timeout_seconds: float = 10.0

    # Payment polling
    polling_interval_ms: int = 5000
    max_polling_attempts: int = 12  # 1 minute total (12 * 5s)
    pending_result_codes: list[str] = ["1"]

    # Client network identity fallback (local testing only)
    placeholder_identity_enabled: bool = True
    placeholder_ip: str = "192.168.1.100"
    placeholder_mac: str = "AA:BB:CC:DD:EE:FF"

    # Package catalog
    enforce_package_catalog: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "hotspot-billing-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: refuse to start without the two upstreams.

        A purchase cannot complete without both the payment backend and the
        access controller, so missing URLs stop the process at import time.
        """
        errors = [
            *_url_errors("API_BASE_URL", self.api_base_url),
            *_url_errors("ACCESS_CONTROLLER_URL", self.access_controller_url),
        ]

        if self.polling_interval_ms <= 0:
            errors.append(f"POLLING_INTERVAL_MS must be positive, got: {self.polling_interval_ms}")
        if self.max_polling_attempts <= 0:
            errors.append(
                f"MAX_POLLING_ATTEMPTS must be positive, got: {self.max_polling_attempts}"
            )

        # The placeholder pair is client-agnostic: every device would share one grant
        if self.is_production and self.placeholder_identity_enabled:
            errors.append(
                "PLACEHOLDER_IDENTITY_ENABLED must be false in production; "
                "client IP/MAC must come from the hotspot redirect"
            )

        if errors:
            rule = "=" * 60
            error_msg = "\n".join(
                ["", rule, "HOTSPOT BILLING CANNOT START - BAD CONFIGURATION", rule]
                + [f"  ✗ {e}" for e in errors]
                + [rule, ""]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def polling_interval_seconds(self) -> float:
        """Polling interval converted from milliseconds."""
        return self.polling_interval_ms / 1000

    @property
    def stk_push_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}{self.stk_push_path}"

    @property
    def verify_payment_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}{self.verify_payment_path}"


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
