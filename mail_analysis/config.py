"""
Centralized configuration using Pydantic Settings.

All environment variables are loaded and validated here.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Email Storage Database
    email_storage_host: str = "email-storage"
    email_storage_port: int = 5432
    email_storage_db: str = "email_processing"
    email_storage_user: str = "email_processor"
    email_storage_password: str = ""
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10

    # Remote analysis service (LLM inference)
    analysis_service_url: str = "http://analysis-agent:8002"
    analysis_service_timeout: float = 60.0
    analysis_service_max_retries: int = 3
    analysis_service_retry_base_delay: float = 2.0

    # Analyzers
    analyzer_model: str = "gpt-4.1-mini"
    analyzer_timeout_seconds: float = 45.0
    analyzer_max_body_chars: int = 16000
    categorizer_enabled: bool = True
    action_extractor_enabled: bool = True
    client_tagger_enabled: bool = True
    event_detector_enabled: bool = True

    # EventDetector only runs for emails categorized as this
    event_trigger_category: str = "event"

    # Batch processing
    batch_size: int = 10
    delay_between_batches_ms: int = 100
    item_timeout_seconds: float | None = 120.0
    batch_timeout_seconds: float | None = None
    cost_per_token: float = 0.0000006  # USD, gpt-4.1-mini blended rate

    # Retry job for failed analyses
    retry_scheduler_enabled: bool = False
    retry_interval_minutes: int = 60
    retry_max_items_per_run: int = 25
    retry_max_error_age_hours: int = 7 * 24
    retry_cooldown_hours: int = 24
    retry_delay_between_items_ms: int = 500

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    @property
    def database_url(self) -> str:
        """PostgreSQL connection URL for email storage database."""
        return (
            f"postgresql://{self.email_storage_user}:{self.email_storage_password}"
            f"@{self.email_storage_host}:{self.email_storage_port}/{self.email_storage_db}"
        )


# Global settings instance
settings = Settings()
