"""Centralized application configuration via Pydantic Settings.

Loads all env vars into a typed Settings instance. The ingestion engine
never reads the environment itself: ``Settings.pipeline_config()`` turns
these values into the immutable PipelineConfig handed to each request.
"""

from pydantic import Field
from pydantic_settings import BaseSettings

from packages.ingestion_engine.config import (
    DEFAULT_MODELS,
    PipelineConfig,
    ProviderConfig,
)


def _split(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # CORS
    ALLOWED_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="Comma-separated allowed origins for CORS",
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Python log level")
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production",
    )
    DEBUG_AI_PARSE: bool = Field(
        default=False,
        description="Log prompt hashes and lengths at DEBUG level",
    )

    # App
    APP_VERSION: str = Field(default="0.1.0", description="Application version")
    MAX_UPLOAD_BYTES: int = Field(
        default=15 * 1024 * 1024,
        description="Largest accepted statement upload, in bytes",
    )

    # Extraction policy
    AI_DISABLE_EXTERNAL: bool = Field(
        default=False,
        description="Never call external providers; deterministic parsing only",
    )
    AI_STRICT_PRIVACY: bool = Field(
        default=False,
        description="Enable aggressive redaction (long digit runs, ID lines)",
    )
    AI_EXTRA_REDACT_WORDS: str = Field(
        default="",
        description="Comma-separated words/phrases masked before any external call",
    )
    DEFAULT_CURRENCY: str = Field(default="USD", description="Fallback ISO 4217 code")

    # Providers
    PERPLEXITY_API_KEY: str = Field(default="", description="Perplexity API key")
    PERPLEXITY_MODEL: str = Field(
        default="",
        description="Comma-separated Perplexity models in preference order",
    )
    GEMINI_API_KEY: str = Field(default="", description="Gemini API key")
    GEMINI_MODEL: str = Field(
        default="",
        description="Comma-separated Gemini models in preference order",
    )
    AI_PROVIDER_ORDER: str = Field(
        default="perplexity,gemini",
        description="Comma-separated provider fallback order",
    )
    AI_REQUEST_TIMEOUT_SECONDS: float = Field(
        default=45.0, description="Per-call timeout for provider requests"
    )
    AI_CHUNK_THRESHOLD_CHARS: int = Field(
        default=20000, description="Prepared text longer than this is chunked"
    )
    AI_CHUNK_MAX_CHARS: int = Field(default=9000, description="Maximum chunk size")

    @property
    def allowed_origins(self) -> list[str]:
        """Parse comma-separated origins into a list."""
        return _split(self.ALLOWED_ORIGINS)

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.DEBUG_AI_PARSE else self.LOG_LEVEL

    @property
    def json_logs(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def extra_redact_words(self) -> list[str]:
        return _split(self.AI_EXTRA_REDACT_WORDS)

    def _provider_settings(self) -> dict[str, tuple[str, str]]:
        return {
            "perplexity": (self.PERPLEXITY_API_KEY, self.PERPLEXITY_MODEL),
            "gemini": (self.GEMINI_API_KEY, self.GEMINI_MODEL),
        }

    def provider_configs(self) -> list[ProviderConfig]:
        """Configured providers in fallback order. Keyless providers are skipped."""
        known = self._provider_settings()
        configs = []
        for name in _split(self.AI_PROVIDER_ORDER.lower()):
            if name not in known or any(c.name == name for c in configs):
                continue
            api_key, models = known[name]
            if not api_key:
                continue
            configs.append(
                ProviderConfig(
                    name=name,
                    api_key=api_key,
                    models=tuple(_split(models)) or DEFAULT_MODELS[name],
                )
            )
        return configs

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            default_currency=self.DEFAULT_CURRENCY.strip().upper() or "USD",
            disable_external=self.AI_DISABLE_EXTERNAL,
            strict_privacy=self.AI_STRICT_PRIVACY,
            extra_redact_words=tuple(self.extra_redact_words),
            debug=self.DEBUG_AI_PARSE,
            providers=tuple(self.provider_configs()),
            request_timeout_seconds=self.AI_REQUEST_TIMEOUT_SECONDS,
            chunk_threshold_chars=self.AI_CHUNK_THRESHOLD_CHARS,
            chunk_max_chars=self.AI_CHUNK_MAX_CHARS,
        )

    model_config = {"env_file": ".env", "extra": "ignore"}


def get_settings() -> Settings:
    """Factory for Settings: allows test override."""
    return Settings()


# Module-level singleton used at import time (CORS, logging)
settings = get_settings()
