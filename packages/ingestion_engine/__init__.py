"""
Statement Ingestion Engine

Reads bank/credit-card statement exports (spreadsheets or delimited text)
and normalizes them into transactions.
"""

__version__ = "0.1.0"

from .config import PipelineConfig, ProviderConfig
from .errors import (
    AllProvidersFailed,
    EmptyFile,
    IngestionError,
    UnreadableFile,
)
from .models import Transaction
from .pipeline import PipelineResult, StatementPipeline

__all__ = [
    "PipelineConfig",
    "ProviderConfig",
    "IngestionError",
    "UnreadableFile",
    "EmptyFile",
    "AllProvidersFailed",
    "Transaction",
    "StatementPipeline",
    "PipelineResult",
]
