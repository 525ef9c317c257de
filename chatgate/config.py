"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Critical config (database, master key) is validated at startup.
"""

import re
import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chatgate.exceptions import ConfigError

MASTER_KEY_PATTERN = re.compile(r"[0-9a-fA-F]{64}")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    # Apply pending Alembic migrations during startup
    auto_migrate: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "ChatGate API"
    api_version: str = "0.1.0"
    api_description: str = "Credit-metered multi-provider chat gateway"

    # Envelope encryption for user-supplied provider keys
    # 32 bytes as 64 hex chars (generate with: openssl rand -hex 32)
    master_key: str = ""

    # Identity provider (Supabase GoTrue)
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # Transactional email (Mailtrap)
    mailtrap_api_token: str = ""
    mailtrap_sender_email: str = "hello@demomailtrap.co"
    mailtrap_sender_name: str = "ChatGate"

    # Upstream model providers
    provider_timeout_seconds: float = 60.0
    # Shared keys used for default/free-tier models when the user has none on file
    gemini_fallback_api_key: str = ""
    openai_fallback_api_key: str = ""
    perplexity_fallback_api_key: str = ""
    huggingface_fallback_api_key: str = ""

    # Credits
    cost_per_message: int = 25
    starting_credits: int = 5000
    free_project_limit: int = 3
    free_import_limit: int = 3

    # One-time passcodes
    otp_cooldown_seconds: int = 60
    otp_expiry_minutes: int = 10
    otp_max_attempts: int = 3

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "chatgate-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start without a database or a usable master key,
        otherwise secrets could be written that can never be read back.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.master_key:
            errors.append("MASTER_KEY is required but empty or missing")
        elif not MASTER_KEY_PATTERN.fullmatch(self.master_key):
            errors.append(
                "MASTER_KEY must be exactly 64 hex characters (32 bytes), "
                f"got length {len(self.master_key)}"
            )

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def fallback_api_keys(self) -> dict[str, str]:
        """Shared provider keys by model family value, skipping unset ones."""
        keys = {
            "gemini": self.gemini_fallback_api_key,
            "openai": self.openai_fallback_api_key,
            "perplexity": self.perplexity_fallback_api_key,
            "huggingface": self.huggingface_fallback_api_key,
        }
        return {family: key for family, key in keys.items() if key}


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
