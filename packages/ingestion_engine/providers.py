"""
External extraction providers.

Each provider turns one prepared text segment into a list of
``ExtractedExpense`` items. Failures come back as values
(``Failure``), never as exceptions, so the orchestrator can walk its
fallback order without try/except at every step.
"""

import copy
import hashlib
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .config import GEMINI, PERPLEXITY, PipelineConfig, ProviderConfig
from .errors import IngestionError, ProviderCallFailed, ProviderResponseInvalid

logger = structlog.get_logger()

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

SYSTEM_PROMPT = (
    "You are a finance assistant. Extract all expense transactions from provided "
    "bank/credit card statement text. Return structured JSON only. Do not include "
    "any personally identifiable information (PII) and do not extract account summaries."
)

EXTRACTION_RULES = """Rules:
- Output an "expenses" array that follows the order of the numbered lines. Do not sort or group.
- The line starting with HEADER: names the columns. It is not a transaction.
- Use ISO date YYYY-MM-DD. If two dates appear (e.g., transaction date and posting date), use the LATER/POSTED date for occurred_on. Do NOT put any dates in the note.
- Currency codes must be ISO 4217 (e.g., CAD, USD, INR).
- Never use a running balance or closing balance column as the amount.
- If a line has separate debit and credit columns, only one of them is the amount. Set direction to "debit" for money out and "credit" for money in.
- If merchant is missing, omit the field.
- If payment method is missing, omit the field.
- Category is optional; guess only if obvious, else omit.
- Note content: Make it a short, human-friendly purpose (e.g., "Car rental", "Dinner at hotel"). Do NOT include any dates in the note.
- Signs: Purchases/charges must be positive; refunds/credits/reversals/cashbacks must be negative. There can be MANY negative transactions, do not drop them. Preserve minus signs and parentheses exactly.
- Include very small amounts.
- Only extract transactions explicitly present in the lines. Do not infer, summarize, or aggregate.
- IMPORTANT: If the same date/merchant/amount appears as separate numbered lines multiple times, output SEPARATE objects for each occurrence with its line_index. Do NOT deduplicate or merge counts.
- Include "line_index" for each transaction: the NUMBER (1-based) of the line that contains the amount/transaction.
- Output must conform to the provided JSON schema."""

EXPENSES_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "expenses": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "amount": {"type": "number"},
                    "currency": {"type": "string"},
                    "direction": {"type": "string", "enum": ["debit", "credit"]},
                    "merchant": {"type": "string"},
                    "payment_method": {"type": "string"},
                    "note": {"type": "string"},
                    "occurred_on": {"type": "string"},
                    "category": {"type": "string"},
                    "line_index": {"type": "integer"},
                },
                "required": ["amount", "currency", "occurred_on", "line_index"],
            },
        }
    },
    "required": ["expenses"],
}

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?|\n?```", re.IGNORECASE)


def build_user_prompt(segment: str) -> str:
    return (
        "The input below is a list of NUMBERED LINES from a bank/credit card statement "
        "(from an Excel/CSV export). Extract transactions strictly from these lines.\n\n"
        f"{segment}\n\n{EXTRACTION_RULES}"
    )


def prompt_hash(text: str) -> str:
    """Short fingerprint used in logs instead of the prompt itself."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]


# ------------------------------------------------------------ payloads


class ExtractedExpense(BaseModel):
    """One provider-returned item. Lenient: unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    amount: Union[float, str, None] = None
    currency: Optional[str] = None
    direction: Optional[str] = None
    merchant: Optional[str] = None
    payment_method: Optional[str] = None
    note: Optional[str] = None
    occurred_on: Optional[str] = None
    category: Optional[str] = None
    line_index: Optional[int] = None

    @field_validator(
        "currency", "merchant", "payment_method", "note", "occurred_on", "category",
        mode="before",
    )
    @classmethod
    def _text_or_none(cls, value):
        if value is None or isinstance(value, (dict, list)):
            return None
        text = str(value).strip()
        return text or None

    @field_validator("direction", mode="before")
    @classmethod
    def _known_direction(cls, value):
        if not isinstance(value, str):
            return None
        value = value.strip().lower()
        return value if value in ("debit", "credit") else None

    @field_validator("line_index", mode="before")
    @classmethod
    def _lenient_index(cls, value):
        if isinstance(value, bool):
            return None
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        return value if isinstance(value, int) else None


def parse_expenses_content(content: Any) -> List[ExtractedExpense]:
    """
    Decode model output into validated items.

    Raises:
        ProviderResponseInvalid: not JSON, or not an object with an
            ``expenses`` array. Individual malformed items are dropped.
    """
    if isinstance(content, str):
        text = _FENCE_RE.sub("", content).strip()
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProviderResponseInvalid("Model returned non-JSON output") from e
    else:
        payload = content

    if not isinstance(payload, dict) or not isinstance(payload.get("expenses"), list):
        raise ProviderResponseInvalid("Model output has no expenses array")

    items: List[ExtractedExpense] = []
    dropped = 0
    for raw in payload["expenses"]:
        try:
            items.append(ExtractedExpense.model_validate(raw))
        except ValidationError:
            dropped += 1
    if dropped:
        logger.info("provider_items_dropped", dropped=dropped, kept=len(items))
    return items


@dataclass(frozen=True)
class ProviderReply:
    expenses: Tuple[ExtractedExpense, ...]


@dataclass(frozen=True)
class Failure:
    error: IngestionError


# ----------------------------------------------------------- providers


class ExtractionProvider:
    """Base class: one HTTP round trip per (model, segment)."""

    name = "provider"

    def __init__(self, api_key: str, models: Sequence[str], debug: bool = False):
        self.api_key = api_key
        self.models = tuple(models)
        self.debug = debug

    def endpoint(self, model: str) -> str:
        raise NotImplementedError

    def headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def payload(self, model: str, prompt: str) -> Dict[str, Any]:
        raise NotImplementedError

    def extract_content(self, body: Any) -> Any:
        raise NotImplementedError

    async def extract(
        self, client: httpx.AsyncClient, model: str, segment: str
    ) -> Union[ProviderReply, Failure]:
        prompt = build_user_prompt(segment)
        if self.debug:
            logger.debug(
                "provider_call",
                provider=self.name,
                model=model,
                prompt_hash=prompt_hash(prompt),
                chars=len(prompt),
            )

        try:
            response = await client.post(
                self.endpoint(model), json=self.payload(model, prompt), headers=self.headers()
            )
            response.raise_for_status()
        except httpx.TimeoutException:
            return Failure(ProviderCallFailed(f"{self.name} request timed out"))
        except httpx.HTTPStatusError as e:
            return Failure(
                ProviderCallFailed(f"{self.name} API error: {e.response.status_code}")
            )
        except httpx.HTTPError as e:
            return Failure(ProviderCallFailed(f"{self.name} request failed: {type(e).__name__}"))

        try:
            body = response.json()
        except ValueError:
            return Failure(ProviderResponseInvalid(f"{self.name} returned a non-JSON body"))

        try:
            content = self.extract_content(body)
        except (KeyError, IndexError, TypeError):
            return Failure(ProviderResponseInvalid(f"{self.name} response has no content"))

        try:
            expenses = parse_expenses_content(content)
        except ProviderResponseInvalid as e:
            return Failure(e)
        return ProviderReply(tuple(expenses))


class PerplexityProvider(ExtractionProvider):
    name = PERPLEXITY

    def endpoint(self, model: str) -> str:
        return PERPLEXITY_URL

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def payload(self, model: str, prompt: str) -> Dict[str, Any]:
        return {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "expenses_schema", "schema": EXPENSES_SCHEMA},
            },
        }

    def extract_content(self, body: Any) -> Any:
        return body["choices"][0]["message"]["content"]


def _without_additional_properties(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {
            k: _without_additional_properties(v)
            for k, v in schema.items()
            if k != "additionalProperties"
        }
    if isinstance(schema, list):
        return [_without_additional_properties(v) for v in schema]
    return schema


class GeminiProvider(ExtractionProvider):
    name = GEMINI

    # Gemini's response schema dialect rejects additionalProperties
    RESPONSE_SCHEMA = _without_additional_properties(copy.deepcopy(EXPENSES_SCHEMA))

    def endpoint(self, model: str) -> str:
        return GEMINI_URL.format(model=model)

    def headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    def payload(self, model: str, prompt: str) -> Dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0,
                "responseMimeType": "application/json",
                "responseSchema": self.RESPONSE_SCHEMA,
            },
        }

    def extract_content(self, body: Any) -> Any:
        return body["candidates"][0]["content"]["parts"][0]["text"]


PROVIDER_CLASSES = {
    PERPLEXITY: PerplexityProvider,
    GEMINI: GeminiProvider,
}


def build_provider(provider_config: ProviderConfig, debug: bool = False) -> ExtractionProvider:
    cls = PROVIDER_CLASSES[provider_config.name]
    return cls(provider_config.api_key, provider_config.models, debug=debug)


def build_providers(config: PipelineConfig) -> List[ExtractionProvider]:
    """Instantiate the configured providers in fallback order."""
    return [
        build_provider(p, debug=config.debug)
        for p in config.providers
        if p.name in PROVIDER_CLASSES
    ]
