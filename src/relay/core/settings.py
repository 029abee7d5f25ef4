"""Relay settings.

One ``pydantic-settings`` class carries every knob the orchestrator reads:
transport, storage, remote collaborators, reaper and batch limits.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** ``RELAY_*`` env vars and an optional ``.env``
    - **Sensible defaults:** Works out of the box for development; with no
      ``engine_url`` runs are recorded but stay ``pending``

Order of precedence (highest → lowest):
    1. Environment variables (``RELAY_DATABASE_URL``, etc.)
    2. ``.env`` file
    3. Defaults below

Examples:
    >>> settings = RelaySettings(engine_url="http://prefect:4200")
    >>> settings.engine_configured
    True

Tags:
    settings, configuration, pydantic, environment, relay

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineConfig(BaseModel):
    """A document processing pipeline backed by one remote deployment."""

    name: str
    label: str
    description: str = ""
    deployment_name: str
    supports_dry_run: bool = True
    doc_types: list[str] = Field(default_factory=list)


def _default_pipelines() -> list[PipelineConfig]:
    return [
        PipelineConfig(
            name="generate_knowledge_overview",
            label="Generate knowledge overview",
            description="Summarise a document into a knowledge overview",
            deployment_name="generate-knowledge-overview/default",
        ),
        PipelineConfig(
            name="polish_document",
            label="Polish document",
            description="Rewrite a document for clarity and consistency",
            deployment_name="polish-document/default",
        ),
    ]


class RelaySettings(BaseSettings):
    """Settings for the relay orchestrator and its transports."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Server ───────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=12100, description="Bind port")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool | None = Field(default=None, description="JSON logs (None = auto by tty)")

    # ── API ──────────────────────────────────────────────────────────────
    api_prefix: str = Field(default="/api/v1", description="URL prefix for all endpoints")
    api_title: str = Field(default="relay API", description="OpenAPI title")
    api_version: str = Field(default="0.1.0", description="OpenAPI version string")
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")

    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite:///relay.db",
        description="SQLite path/URL or SQLAlchemy connection URL",
    )
    data_dir: str | None = Field(default=None, description="Base directory for relative SQLite paths")

    # ── Remote engine ────────────────────────────────────────────────────
    engine_url: str | None = Field(default=None, description="Flow engine API base URL")
    engine_api_key: str | None = Field(default=None, description="Bearer token for the engine API")
    engine_timeout_seconds: float = Field(default=30.0, description="Per-request timeout")
    engine_max_retries: int = Field(default=3, description="Retries after the first submission attempt")
    engine_retry_base_delay: float = Field(default=2.0, description="First backoff delay in seconds")

    # ── Content store ────────────────────────────────────────────────────
    content_store_url: str | None = Field(default=None, description="Content store API base URL")
    content_store_api_key: str | None = Field(default=None, description="x-api-key for the content store")
    content_store_timeout_seconds: float = Field(default=30.0, description="Per-request timeout")

    # ── Callbacks ────────────────────────────────────────────────────────
    public_base_url: str = Field(
        default="http://localhost:12100",
        description="Externally reachable base URL used to build callback URLs",
    )
    callback_secret: str | None = Field(default=None, description="Shared secret for callback signatures")
    llm_base_url: str | None = Field(default=None, description="Passed to processing pipelines")

    # ── Reaper ───────────────────────────────────────────────────────────
    zombie_threshold_minutes: int = Field(default=30, description="Age after which active runs are stuck")
    reaper_interval_seconds: int = Field(default=0, description="Background reaper period (0 disables)")

    # ── Batches ──────────────────────────────────────────────────────────
    default_batch_concurrency: int = Field(default=1, description="Workflow batch submission concurrency")
    default_sync_concurrency: int = Field(default=10, description="Sync batch submission concurrency")
    max_batch_concurrency: int = Field(default=20, description="Upper bound for any batch")

    # ── Sync ─────────────────────────────────────────────────────────────
    sync_workflow_key: str = Field(default="sync_document", description="Workflow used for document sync")
    sync_pending_timeout_seconds: int = Field(default=60, description="Age after which a pending sync is stale")
    sync_deployment_name: str = Field(
        default="sync-document/default",
        description="Deployment used for sync when no definition names one",
    )

    # ── Definitions ──────────────────────────────────────────────────────
    definition_tag_prefix: str = Field(default="relay:", description="Tag prefix for managed deployments")

    # ── Pipelines ────────────────────────────────────────────────────────
    pipelines: list[PipelineConfig] = Field(default_factory=_default_pipelines)

    @property
    def engine_configured(self) -> bool:
        return bool(self.engine_url)

    @property
    def zombie_threshold_seconds(self) -> int:
        return self.zombie_threshold_minutes * 60

    def pipeline(self, name: str) -> PipelineConfig | None:
        for pipeline in self.pipelines:
            if pipeline.name == name:
                return pipeline
        return None
