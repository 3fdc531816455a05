"""Typed failures raised or returned by the ingestion pipeline."""


class IngestionError(Exception):
    """Base class for every pipeline error."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UnreadableFile(IngestionError):
    """The upload is not a spreadsheet/CSV we can decode."""


class EmptyFile(IngestionError):
    """The upload decoded fine but holds no sheets or rows."""


class NoUsableHeader(IngestionError):
    """No candidate header row scored. Logged, then row 0 is used."""


class ProviderCallFailed(IngestionError):
    """Network, HTTP status or timeout failure talking to a provider."""


class ProviderResponseInvalid(IngestionError):
    """Provider answered, but not with JSON matching the expenses schema."""


class ExtractionEmpty(IngestionError):
    """Provider answered validly but produced zero usable transactions."""


class AllProvidersFailed(IngestionError):
    """Every provider and model was tried without a usable result."""
