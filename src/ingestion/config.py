"""
Configuration for the transcript sync pipeline
"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncConfig(BaseSettings):
    """Sync pipeline configuration"""

    # PostgreSQL Configuration
    database_url: str = Field(
        default="sqlite:///./transcripts.db",
        validation_alias=AliasChoices("DATABASE_URL", "database_url"),
    )

    # Voiceflow credentials (several env names are in use across deployments)
    project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "PROJECT_ID",
            "VOICEFLOW_PROJECT_ID",
            "VOICEFLOW_AGENT_ID",
            "VOICEFLOW_ASSISTANT_ID",
            "project_id",
        ),
    )
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "API_KEY",
            "VOICEFLOW_API_KEY",
            "VOICEFLOW_DM_API_KEY",
            "api_key",
        ),
    )
    # Environment filter; unset means transcripts from every environment
    version_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("VERSION_ID", "VOICEFLOW_VERSION_ID", "version_id"),
    )

    # Voiceflow analytics API
    api_base_url: str = Field(
        default="https://analytics-api.voiceflow.com",
        validation_alias=AliasChoices("VOICEFLOW_ANALYTICS_URL", "api_base_url"),
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("VOICEFLOW_HTTP_TIMEOUT", "http_timeout_seconds"),
    )

    # Pagination
    page_size: int = Field(default=100, ge=1, validation_alias=AliasChoices("SYNC_PAGE_SIZE", "page_size"))
    max_pages: int = Field(default=100, ge=1, validation_alias=AliasChoices("SYNC_MAX_PAGES", "max_pages"))

    # Concurrency (ingestion holds a transactional connection, keep it lower)
    fetch_concurrency: int = Field(
        default=10, ge=1, validation_alias=AliasChoices("SYNC_FETCH_CONCURRENCY", "fetch_concurrency")
    )
    ingest_concurrency: int = Field(
        default=5, ge=1, validation_alias=AliasChoices("SYNC_INGEST_CONCURRENCY", "ingest_concurrency")
    )

    # Logging
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "log_level"))

    # Prometheus exporter port for the CLI; unset disables it
    metrics_port: Optional[int] = Field(default=None, validation_alias=AliasChoices("METRICS_PORT", "metrics_port"))

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def has_credentials(self) -> bool:
        """True when both the project id and the API key are set"""
        return bool(self.project_id and self.project_id.strip() and self.api_key and self.api_key.strip())
