"""
PII redaction applied to statement text before it leaves the process.

Rules run per line. Decimal amounts and ISO dates are never touched by
the digit-masking rules, otherwise the extractor would lose the very
values it needs.
"""

import re
from typing import Iterable, List, Tuple

from .config import PipelineConfig

REDACTED = "[REDACTED]"
REDACTED_EMAIL = "[REDACTED_EMAIL]"
REDACTED_PHONE = "[REDACTED_PHONE]"
REDACTED_LINE = "[REDACTED_LINE]"
REDACTED_CUSTOM = "[REDACTED_CUSTOM]"

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_ACCOUNT_RE = re.compile(
    r"(?P<label>\b(?:account|acct|card|iban|routing|sort code)"
    r"(?:\s+(?:number|no\.?|num|ending(?:\s+in)?))?\s*[:#]?\s*)"
    r"(?P<number>\d[\d\- ]*\d)(?![\d.,])",
    re.IGNORECASE,
)
_PAN_RE = re.compile(r"(?<![\d.])(?:\d[ -]?){12,18}\d(?!\d|[.,]\d)")
_EMAIL_RE = re.compile(r"[A-Z0-9._%+\-]+@[A-Z0-9.\-]+\.[A-Z]{2,}", re.IGNORECASE)
_PHONE_RE = re.compile(
    r"(?<![\d.])(?:\+\d{1,3}[\s.\-]?)?\(?\d{3}\)?[\s.\-]?\d{3}[\s.\-]\d{4}(?!\d|[.,]\d)"
)
_LABEL_RE = re.compile(
    r"(?P<lead>(?:^|(?<=\|))\s*)"
    r"(?P<label>billing address|mailing address|address|customer name|name)"
    r"\s*:[^|]*?(?=\s*\||\s*$)",
    re.IGNORECASE,
)

# Strict privacy
_LONG_DIGITS_RE = re.compile(r"(?<![\d.])\d{9,}(?!\d|[.,]\d)")
_DIGIT_GROUPS_RE = re.compile(r"(?<!\d)(?:\d{4}[\-\s]){2,3}\d{3,4}(?!\d)")
# Acronyms are matched case-sensitively so "Pan Pacific Hotel" survives
_GOVERNMENT_ID_RE = re.compile(
    r"\b(?:SSN|SIN|PAN|GSTIN)\b|\bDL No\."
    r"|(?i:\b(?:passport|driver'?s?\s+licen[cs]e|aadhaar|tax\s+id)\b)"
)


def _mask_digits(text: str) -> str:
    return re.sub(r"\d", "X", text)


def _mask_account(match: re.Match) -> str:
    number = match.group("number")
    if sum(c.isdigit() for c in number) < 4 or _ISO_DATE_RE.match(number):
        return match.group(0)
    return match.group("label") + _mask_digits(number)


class Redactor:
    """Line-level PII scrubber."""

    def __init__(self, strict: bool = False, extra_words: Iterable[str] = ()):
        self.strict = strict
        words = [w.strip() for w in extra_words if w and w.strip()]
        # Longest first so a phrase is masked before any word inside it
        self.extra_patterns: Tuple[re.Pattern, ...] = tuple(
            re.compile(re.escape(w), re.IGNORECASE)
            for w in sorted(words, key=len, reverse=True)
        )

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "Redactor":
        return cls(strict=config.strict_privacy, extra_words=config.extra_redact_words)

    def redact(self, line: str) -> str:
        if self.strict and _GOVERNMENT_ID_RE.search(line):
            return REDACTED_LINE

        text = _LABEL_RE.sub(lambda m: f"{m.group('lead')}{m.group('label')}: {REDACTED}", line)
        text = _EMAIL_RE.sub(REDACTED_EMAIL, text)
        text = _ACCOUNT_RE.sub(_mask_account, text)
        text = _PAN_RE.sub(lambda m: _mask_digits(m.group(0)), text)
        text = _PHONE_RE.sub(REDACTED_PHONE, text)

        if self.strict:
            text = _LONG_DIGITS_RE.sub(lambda m: "X" * len(m.group(0)), text)
            text = _DIGIT_GROUPS_RE.sub(lambda m: _mask_digits(m.group(0)), text)

        for pattern in self.extra_patterns:
            text = pattern.sub(REDACTED_CUSTOM, text)
        return text

    def redact_lines(self, lines: Iterable[str]) -> List[str]:
        return [self.redact(line) for line in lines]
