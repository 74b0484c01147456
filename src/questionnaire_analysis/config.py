"""Configuration management for the questionnaire analysis engine."""

from pathlib import Path

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings, loaded from env vars and optionally overridden by a YAML config file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API keys
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    jina_api_key: str = ""

    # Provider endpoints
    openai_base_url: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    jina_base_url: str = "https://api.jina.ai/v1/embeddings"

    # Model selection
    fast_provider: str = "openai"
    premium_provider: str = "anthropic"
    openai_fast_model: str = "gpt-4o-mini"
    openai_premium_model: str = "gpt-4-turbo-preview"
    anthropic_fast_model: str = "claude-3-5-haiku-20241022"
    anthropic_premium_model: str = "claude-3-5-sonnet-20241022"
    embedding_model: str = "jina-embeddings-v3"

    # Call defaults
    default_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    default_max_tokens: int = Field(default=2000, gt=0)
    request_timeout_seconds: float = 30.0
    client_max_retries: int = Field(default=3, ge=0)
    client_backoff_seconds: float = 1.0
    client_backoff_jitter_seconds: float = 0.25

    # Throttling
    provider_rate_limit_calls: int = 10
    provider_rate_limit_window_seconds: float = 60.0
    job_rate_limit_calls: int = 10
    job_rate_limit_window_seconds: float = 60.0
    worker_count: int = Field(default=3, gt=0)

    # Analysis
    max_responses_per_prompt: int = Field(default=50, gt=0)
    min_cluster_size: int = Field(default=3, gt=0)
    max_contradiction_pairs: int = 10
    min_contradiction_respondents: int = 3
    max_insight_sections: int = 4

    # Privacy
    k_anonymity: int = Field(default=2, ge=2)
    anonymization_salt: str = ""
    anonymization_level: str = "full"
    consent_type: str = "research_analysis"
    quasi_identifier_fields: list[str] = Field(
        default_factory=lambda: ["age_group", "region", "gender", "occupation"]
    )

    # Caches and history
    questionnaire_cache_ttl_seconds: float = 86400.0
    embedding_cache_ttl_seconds: float = 86400.0
    event_history_size: int = 1000

    # Tracing
    langsmith_tracing: bool = False
    langsmith_api_key: str = ""
    langsmith_project: str = ""

    # Paths
    data_dir: Path = Field(default=Path("data"))
    output_dir: Path = Field(default=Path("runs"))

    @classmethod
    def from_yaml(cls, config_path: str | Path, **overrides) -> "Settings":
        """Load settings from a YAML config file, with env vars and overrides applied on top."""
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_config = yaml.safe_load(f) or {}
        else:
            yaml_config = {}
        merged = {**yaml_config, **overrides}
        return cls(**merged)

    def resolved_openai_base_url(self) -> str:
        """Return the OpenAI base URL with a trailing slash, or empty for the SDK default."""

        candidate = self.openai_base_url.strip()
        if not candidate:
            return ""
        return f"{candidate.rstrip('/')}/"

    def api_key_for(self, provider: str) -> str:
        """Return the stripped API key configured for a provider name."""

        keys = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "jina": self.jina_api_key,
        }
        return keys.get(provider, "").strip()

    def key_source_for(self, provider: str) -> str:
        """Return non-secret key source label for diagnostics."""

        env_name = f"{provider.upper()}_API_KEY"
        if self.api_key_for(provider):
            return env_name
        return f"{env_name} (missing)"

    def model_for(self, provider: str, tier: str) -> str:
        """Return the configured model for a provider and tier (``fast`` or ``premium``)."""

        attribute = f"{provider}_{tier}_model"
        if not hasattr(self, attribute):
            raise KeyError(f"No model configured for provider={provider!r} tier={tier!r}.")
        return str(getattr(self, attribute)).strip()
