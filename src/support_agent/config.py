"""Configuration models for the support agent."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewayConfig(BaseModel):
    """Configures model calls, retry/backoff policy and token pricing."""

    model_config = ConfigDict(protected_namespaces=())

    model_name: str = "claude-sonnet-4-5-20250929"
    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_delay_seconds: float = Field(default=10.0, ge=0.0)
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_tokens: int = Field(default=1024, ge=1)
    # USD per million tokens; output generation is priced higher.
    input_price_per_million: float = Field(default=3.0, ge=0.0)
    output_price_per_million: float = Field(default=15.0, ge=0.0)
    retryable_status_codes: tuple[int, ...] = (429, 529)


class RetrievalConfig(BaseModel):
    """Configures keyword scoring over the knowledge corpus."""

    top_k: int = Field(default=3, ge=1)
    min_term_length: int = Field(default=3, ge=1)
    title_weight: int = Field(default=3, ge=0)
    body_weight: int = Field(default=1, ge=0)


class AgentConfig(BaseModel):
    """Configures the persona and retrieval depth of the orchestrator."""

    product_name: str = "TechCorp API"
    default_language: str = "English"
    top_k: int = Field(default=3, ge=1)


class TracingConfig(BaseModel):
    """Configures Langfuse delivery of interaction traces."""

    enabled: bool = True
    public_key: str | None = None
    secret_key: str | None = None
    host: str = "https://cloud.langfuse.com"
    flush_at: int = Field(default=10, ge=1)
    flush_interval_seconds: float = Field(default=2.0, gt=0.0)
    shutdown_timeout_seconds: float = Field(default=5.0, gt=0.0)


class AppSettings(BaseSettings):
    """Process-wide settings read from the environment and `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    service_name: str = "support-agent"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    anthropic_api_key: str | None = None
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    anthropic_timeout_ms: int = Field(default=30_000, gt=0)
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"

    knowledge_dir: Path = Field(default_factory=lambda: Path.cwd() / "knowledge")

    langfuse_enabled: bool = True
    langfuse_public_key: str | None = None
    langfuse_secret_key: str | None = None
    langfuse_host: str = "https://cloud.langfuse.com"

    api_key_required: bool = False
    api_key: str | None = None
    cors_origins: str = "http://localhost:3000"

    rate_limit_enabled: bool = True
    rate_limit_max: int = Field(default=20, ge=1)
    rate_limit_window_ms: int = Field(default=60_000, ge=1000)
    max_body_bytes: int = Field(default=50 * 1024, ge=1)

    @property
    def model_name(self) -> str:
        if self.anthropic_api_key or not self.openai_api_key:
            return self.anthropic_model
        return self.openai_model

    def gateway_config(self) -> GatewayConfig:
        return GatewayConfig(
            model_name=self.model_name,
            timeout_seconds=self.anthropic_timeout_ms / 1000.0,
        )

    def tracing_config(self) -> TracingConfig:
        return TracingConfig(
            enabled=self.langfuse_enabled,
            public_key=self.langfuse_public_key,
            secret_key=self.langfuse_secret_key,
            host=self.langfuse_host,
        )

    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def rate_limit(self) -> str:
        """Per-client request allowance in `limits` notation."""

        return f"{self.rate_limit_max} per {self.rate_limit_window_ms // 1000} second"
