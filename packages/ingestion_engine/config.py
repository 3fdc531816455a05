"""
Immutable pipeline configuration.

Built once by the API layer from its settings and handed to each stage.
Nothing inside the engine reads environment variables directly.
"""

from dataclasses import dataclass
from typing import Tuple

PERPLEXITY = "perplexity"
GEMINI = "gemini"

DEFAULT_MODELS = {
    PERPLEXITY: ("sonar", "sonar-pro"),
    GEMINI: ("gemini-2.5-flash", "gemini-2.0-flash"),
}


@dataclass(frozen=True)
class ProviderConfig:
    """One external extraction provider and its model preference order."""

    name: str
    api_key: str
    models: Tuple[str, ...]


@dataclass(frozen=True)
class PipelineConfig:
    default_currency: str = "USD"
    disable_external: bool = False
    strict_privacy: bool = False
    extra_redact_words: Tuple[str, ...] = ()
    debug: bool = False
    providers: Tuple[ProviderConfig, ...] = ()
    request_timeout_seconds: float = 45.0
    # Prepared text longer than this is split into chunks of chunk_max_chars
    chunk_threshold_chars: int = 20000
    chunk_max_chars: int = 9000
    header_scan_rows: int = 10
    balance_outlier_factor: float = 10.0

    @property
    def external_enabled(self) -> bool:
        return not self.disable_external and bool(self.providers)
