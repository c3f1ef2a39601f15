"""Central environment-driven settings for the webhook delivery service.

The service process loads this once at startup. Delivery policy (attempt cap,
backoff schedule, timeouts, idempotency window) is controlled by environment
variables (see `.env.example`).
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "renewal-webhooks"
    log_level: str = "INFO"
    postgres_dsn: str
    api_key: str = "dev-secret"
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    webhook_max_attempts: int = 5
    webhook_backoff_seconds: list[int] = [1, 2, 4, 8, 16]
    webhook_timeout_seconds: float = 5.0
    idempotency_window_seconds: int = 3600
    recovery_interval_seconds: float = 5.0
    recovery_grace_seconds: int = 30
    processing_timeout_seconds: int = 60
    shutdown_grace_seconds: float = 10.0
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @model_validator(mode="after")
    def check_attempt_timeout(self) -> "CommonSettings":
        # A stale-processing reclaim must never overlap a live attempt.
        if self.webhook_timeout_seconds >= self.processing_timeout_seconds:
            raise ValueError("WEBHOOK_TIMEOUT_SECONDS must be below PROCESSING_TIMEOUT_SECONDS")
        return self


settings = CommonSettings()
