"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated when settings are first loaded.
"""

import sys
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from iap_util.models.apple_storekit import AppleStoreKitConfig
from iap_util.models.google_play import GooglePlayConfig


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Settings loaded from environment variables (or a .env file)."""

    # Expected audience: Apple bundle ID / Android package name
    application_id: str = ""

    # Apple App Store Server API (from App Store Connect > Users and Access > Keys)
    apple_private_key: str = ""  # .p8 contents, raw PEM or base64
    apple_key_id: str = ""
    apple_issuer_id: str = ""
    apple_environment: str = "production"  # production or sandbox
    apple_sandbox_fallback: bool = True

    # Google Play Developer API
    google_service_account_json: str = ""  # Path to key file or raw JSON
    google_notification_secret: str = ""  # Pre-shared RTDN push secret

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "iap-util"
    service_version: str = "0.1.0"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration when settings load.

        A half-configured vendor is rejected here rather than on the first
        verification call.
        """
        errors: list[str] = []

        if not self.application_id:
            errors.append("APPLICATION_ID is required but empty or missing")

        if self.apple_environment.lower() not in ("production", "sandbox"):
            errors.append(
                f"APPLE_ENVIRONMENT must be 'production' or 'sandbox', got: {self.apple_environment}"
            )

        apple_fields = {
            "APPLE_PRIVATE_KEY": self.apple_private_key,
            "APPLE_KEY_ID": self.apple_key_id,
            "APPLE_ISSUER_ID": self.apple_issuer_id,
        }
        if any(apple_fields.values()) and not all(apple_fields.values()):
            missing = [name for name, value in apple_fields.items() if not value]
            errors.append(f"Apple API partially configured, missing: {', '.join(missing)}")

        if self.log_format not in ("json", "console"):
            errors.append(f"LOG_FORMAT must be 'json' or 'console', got: {self.log_format}")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def apple_configured(self) -> bool:
        return bool(self.apple_private_key and self.apple_key_id and self.apple_issuer_id)

    @property
    def google_configured(self) -> bool:
        return bool(self.google_service_account_json)

    def apple_storekit_config(self) -> AppleStoreKitConfig | None:
        """Build the App Store Server API config, or None when Apple is not configured."""
        if not self.apple_configured:
            return None
        return AppleStoreKitConfig(
            key_id=self.apple_key_id,
            issuer_id=self.apple_issuer_id,
            private_key=self.apple_private_key,
            bundle_id=self.application_id,
            environment=self.apple_environment.lower(),
            sandbox_fallback=self.apple_sandbox_fallback,
        )

    def google_play_config(self) -> GooglePlayConfig | None:
        """Build the Play Developer API config, or None when Google is not configured."""
        if not self.google_configured:
            return None
        return GooglePlayConfig(
            service_account_json=self.google_service_account_json,
            package_name=self.application_id,
        )


@lru_cache
def get_settings() -> Settings:
    """Get the application settings instance (loaded and validated once)."""
    return Settings()
