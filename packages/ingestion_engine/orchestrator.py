"""
Extraction orchestrator: ordered provider/model fallback.

Providers are tried in configured order, and within a provider its models
strictly in preference order. A model attempt sends every segment in
sequence and stops at the first failed call or invalid response. An
attempt whose segments yield zero post-processed transactions counts as
a failure too. No model is retried.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple, Union

import httpx
import structlog

from .chunker import Chunk
from .errors import AllProvidersFailed, ExtractionEmpty, IngestionError
from .models import Transaction
from .postprocess import PostProcessor
from .providers import ExtractedExpense, ExtractionProvider, Failure

logger = structlog.get_logger()


@dataclass(frozen=True)
class Attempt:
    provider: str
    model: str
    outcome: str
    detail: str = ""


@dataclass(frozen=True)
class Success:
    transactions: Tuple[Transaction, ...]
    provider: str
    model: str
    attempts: Tuple[Attempt, ...] = ()


@dataclass(frozen=True)
class EmptyResult:
    error: ExtractionEmpty


@dataclass(frozen=True)
class Exhausted:
    """Every provider and model failed. Holds each provider's last error."""

    errors: Tuple[str, ...] = ()
    attempts: Tuple[Attempt, ...] = ()

    def to_error(self) -> AllProvidersFailed:
        if not self.errors:
            return AllProvidersFailed("No extraction provider produced a result")
        return AllProvidersFailed("; ".join(self.errors))


ModelOutcome = Union[Success, EmptyResult, Failure]


class ExtractionOrchestrator:
    def __init__(
        self, providers: Sequence[ExtractionProvider], post_processor: PostProcessor
    ):
        self.providers = list(providers)
        self.post_processor = post_processor

    async def attempt(
        self,
        client: httpx.AsyncClient,
        provider: ExtractionProvider,
        model: str,
        segments: Sequence[Chunk],
    ) -> ModelOutcome:
        """Run one model over every segment."""
        collected: List[ExtractedExpense] = []
        for index, segment in enumerate(segments):
            reply = await provider.extract(client, model, segment.text)
            if isinstance(reply, Failure):
                logger.info(
                    "segment_failed",
                    provider=provider.name,
                    model=model,
                    segment=index,
                    segments=len(segments),
                )
                return reply
            collected.extend(reply.expenses)

        transactions = self.post_processor.process(collected)
        if not transactions:
            return EmptyResult(
                ExtractionEmpty(f"{provider.name} ({model}) produced no usable transactions")
            )
        return Success(tuple(transactions), provider.name, model)

    async def run(
        self, client: httpx.AsyncClient, segments: Sequence[Chunk]
    ) -> Union[Success, Exhausted]:
        last_errors: Dict[str, str] = {}
        attempts: List[Attempt] = []

        for provider in self.providers:
            for model in provider.models:
                outcome = await self.attempt(client, provider, model, segments)

                if isinstance(outcome, Success):
                    attempts.append(
                        Attempt(provider.name, model, "success", str(len(outcome.transactions)))
                    )
                    logger.info(
                        "extraction_succeeded",
                        provider=provider.name,
                        model=model,
                        transactions=len(outcome.transactions),
                        attempts=len(attempts),
                    )
                    return Success(
                        outcome.transactions, outcome.provider, outcome.model, tuple(attempts)
                    )

                error: IngestionError = outcome.error
                kind = "empty" if isinstance(outcome, EmptyResult) else "failure"
                attempts.append(Attempt(provider.name, model, kind, error.message))
                last_errors[provider.name] = error.message
                logger.warning(
                    "provider_attempt_failed",
                    provider=provider.name,
                    model=model,
                    error_type=type(error).__name__,
                    detail=error.message,
                )

        logger.error("all_providers_failed", attempts=len(attempts))
        return Exhausted(tuple(last_errors.values()), tuple(attempts))
