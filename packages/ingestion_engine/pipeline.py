"""
Statement pipeline facade.

Wires reader -> header locator -> {deterministic parser, text preparer ->
chunker -> orchestrator -> post-processor} and applies the result policy:

- the deterministic baseline is always computed;
- with external extraction disabled (or no provider configured) the
  baseline is returned;
- a successful AI extraction supersedes the baseline;
- if every provider fails, a non-empty baseline is returned, otherwise
  ``AllProvidersFailed`` is raised.
"""

import asyncio
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx
import structlog

from .chunker import Chunk, segment_statement
from .column_parser import parse_columns
from .config import PipelineConfig
from .header_locator import locate_header
from .models import HeaderLocation, RawGrid, Transaction
from .orchestrator import Attempt, Exhausted, ExtractionOrchestrator, Success
from .postprocess import PostProcessor
from .providers import ExtractionProvider, build_providers, prompt_hash
from .reader import read_grid
from .redaction import Redactor
from .text_preparer import PreparedStatement, prepare_statement

logger = structlog.get_logger()

SOURCE_AI = "ai"
SOURCE_DETERMINISTIC = "deterministic"

PREVIEW_SAMPLE_CHARS = 400


@dataclass(frozen=True)
class LoadedStatement:
    grid: RawGrid
    location: HeaderLocation


@dataclass
class PipelineResult:
    transactions: List[Transaction]
    source: str
    attempts: List[Attempt] = field(default_factory=list)

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.transactions]


class StatementPipeline:
    """One instance per request; holds no state between calls."""

    def __init__(
        self,
        config: PipelineConfig,
        providers: Optional[Sequence[ExtractionProvider]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.providers = list(providers) if providers is not None else build_providers(config)
        self.redactor = Redactor.from_config(config)
        self.transport = transport

    @property
    def external_enabled(self) -> bool:
        return not self.config.disable_external and bool(self.providers)

    def load(
        self, content: bytes, filename: Optional[str] = None, password: Optional[str] = None
    ) -> LoadedStatement:
        grid = read_grid(content, filename=filename, password=password)
        location = locate_header(grid, max_scan=self.config.header_scan_rows)
        return LoadedStatement(grid=grid, location=location)

    def load_with_baseline(
        self, content: bytes, filename: Optional[str] = None, password: Optional[str] = None
    ) -> Tuple[LoadedStatement, List[Transaction]]:
        loaded = self.load(content, filename=filename, password=password)
        return loaded, parse_columns(loaded.grid, loaded.location, self.config)

    def prepare(self, loaded: LoadedStatement) -> PreparedStatement:
        return prepare_statement(loaded.grid, loaded.location, self.redactor)

    def segments(self, statement: PreparedStatement) -> List[Chunk]:
        return segment_statement(
            statement, self.config.chunk_threshold_chars, self.config.chunk_max_chars
        )

    async def extract(self, loaded: LoadedStatement) -> Union[Success, Exhausted]:
        """Run the orchestrator over the redacted statement text."""
        statement = self.prepare(loaded)
        segments = self.segments(statement)
        if self.config.debug:
            logger.debug(
                "statement_prepared",
                prompt_hash=prompt_hash(statement.text),
                chars=len(statement),
                segments=len(segments),
            )

        orchestrator = ExtractionOrchestrator(
            self.providers, PostProcessor(loaded.grid, loaded.location, self.config)
        )
        timeout = httpx.Timeout(self.config.request_timeout_seconds)
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            return await orchestrator.run(client, segments)

    async def run(
        self, content: bytes, filename: Optional[str] = None, password: Optional[str] = None
    ) -> PipelineResult:
        # Workbook decoding is CPU-bound; keep the event loop free meanwhile
        loop = asyncio.get_event_loop()
        loaded, baseline = await loop.run_in_executor(
            None, partial(self.load_with_baseline, content, filename, password)
        )

        if not self.external_enabled:
            logger.info("external_extraction_skipped", transactions=len(baseline))
            return PipelineResult(baseline, SOURCE_DETERMINISTIC)

        if not loaded.grid.row(loaded.location.row_index + 1):
            # Header only, nothing to send
            return PipelineResult(baseline, SOURCE_DETERMINISTIC)

        outcome = await self.extract(loaded)
        if isinstance(outcome, Success):
            return PipelineResult(list(outcome.transactions), SOURCE_AI, list(outcome.attempts))

        if baseline:
            logger.warning(
                "ai_extraction_exhausted",
                fallback=SOURCE_DETERMINISTIC,
                transactions=len(baseline),
            )
            return PipelineResult(baseline, SOURCE_DETERMINISTIC, list(outcome.attempts))
        raise outcome.to_error()

    def preview(
        self, content: bytes, filename: Optional[str] = None, password: Optional[str] = None
    ) -> Dict[str, Any]:
        """Redacted-text fingerprint and samples, with no external call."""
        text = self.prepare(self.load(content, filename=filename, password=password)).text
        preview: Dict[str, Any] = {
            "promptHash": prompt_hash(text),
            "length": len(text),
            "head": text[:PREVIEW_SAMPLE_CHARS],
        }
        if len(text) > 2 * PREVIEW_SAMPLE_CHARS:
            preview["tail"] = text[-PREVIEW_SAMPLE_CHARS:]
        return preview
