"""
Header detection and semantic column mapping.

Statement exports often carry a bank preamble (holder name, account
summary) above the real header, so the header row is found by scoring
the first few rows against a dictionary of known column aliases.
"""

import re
from typing import Dict, List, Sequence, Tuple

import structlog

from .errors import NoUsableHeader
from .models import Cell, Field, HeaderLocation, HeaderMap, RawGrid, Text
from .values import cell_to_text

logger = structlog.get_logger()

HEADER_SCAN_ROWS = 10

# Field order doubles as the tie-break when two fields match equally well
HEADER_ALIASES: Dict[Field, List[str]] = {
    Field.DATE: [
        "date",
        "transaction date",
        "txn date",
        "trans date",
        "posted date",
        "post date",
        "posting date",
        "date posted",
        "value date",
        "occurred on",
    ],
    Field.AMOUNT: [
        "amount",
        "transaction amount",
        "expense amount",
        "purchase amount",
        "amt",
        "amount cad",
        "amount usd",
        "amount inr",
    ],
    Field.DEBIT: ["debit", "withdrawal", "charge", "spent", "dr", "debit amount"],
    Field.CREDIT: ["credit", "deposit", "refund", "cr", "payment", "credit amount"],
    Field.CURRENCY: ["currency", "curr", "ccy", "currency code", "iso currency"],
    Field.DESCRIPTION: [
        "description",
        "merchant",
        "details",
        "memo",
        "narration",
        "payee",
        "reference",
        "notes",
        "particulars",
        "statement description",
        "desc",
        "statement text",
    ],
    Field.CATEGORY: ["category", "type", "expense category"],
    Field.PAYMENT_METHOD: ["payment method", "method", "card", "channel", "account"],
}

_FIELD_RANK = {name: rank for rank, name in enumerate(HEADER_ALIASES)}


def normalize_header(value: str) -> str:
    """'PostedDate' / 'Posted_Date' / ' POSTED-DATE ' -> 'posted date'."""
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", str(value))
    text = text.lower()
    text = re.sub(r"[^a-z0-9]+", " ", text)
    return text.strip()


def _alias_pattern(alias: str):
    # Word boundaries so "cr" does not hit "description"; plurals allowed
    return re.compile(rf"(?<![a-z0-9]){re.escape(alias)}s?(?![a-z0-9])")


_ALIAS_PATTERNS = {
    alias: _alias_pattern(alias) for aliases in HEADER_ALIASES.values() for alias in aliases
}


def _contains_alias(normalized: str, alias: str) -> bool:
    return _ALIAS_PATTERNS[alias].search(normalized) is not None


def _is_exact(normalized: str, alias: str) -> bool:
    return normalized in (alias, alias + "s")


def _is_date_headed(normalized: str) -> bool:
    # "Charge Date", "Payment Date": the trailing word names what the column holds
    return normalized.split()[-1] in ("date", "dates")


def _header_text(cell: Cell) -> str:
    if not isinstance(cell, Text):
        return ""
    return normalize_header(cell_to_text(cell))


def score_row(row: Sequence[Cell]) -> int:
    """One point per (cell, field) pair where the cell contains a field alias."""
    score = 0
    for cell in row:
        normalized = _header_text(cell)
        if not normalized:
            continue
        for aliases in HEADER_ALIASES.values():
            if any(_contains_alias(normalized, alias) for alias in aliases):
                score += 1
    return score


def find_header_row(grid: RawGrid, max_scan: int = HEADER_SCAN_ROWS) -> Tuple[int, int]:
    """Return (row_index, score) of the best-scoring row; ties go to the earliest."""
    best_index, best_score = 0, 0
    for index in range(min(max_scan, len(grid))):
        score = score_row(grid.row(index))
        if score > best_score:
            best_index, best_score = index, score
    return best_index, best_score


def build_header_map(row: Sequence[Cell]) -> HeaderMap:
    """
    Assign each field at most one column and each column at most one field.

    Exact alias matches are claimed before containment matches, so "Debit
    Amount" goes to debit rather than amount. Among containment matches the
    longer alias wins ("Withdrawal Amt" is a debit, not an amount). Remaining
    ties resolve to the earliest field, then the earliest column. A header
    ending in "date" ("Charge Date", "Payment Date") only ever maps to date.
    """
    candidates = []
    for column, cell in enumerate(row):
        normalized = _header_text(cell)
        if not normalized:
            continue
        date_headed = _is_date_headed(normalized)
        for name, aliases in HEADER_ALIASES.items():
            if date_headed and name != Field.DATE:
                continue
            matches = [a for a in aliases if _contains_alias(normalized, a)]
            if not matches:
                continue
            exact = any(_is_exact(normalized, a) for a in matches)
            weight = 0 if exact else -len(max(matches, key=len))
            candidates.append((not exact, weight, _FIELD_RANK[name], column, name))

    header_map: HeaderMap = {}
    claimed = set()
    for _, _, _, column, name in sorted(candidates, key=lambda c: c[:4]):
        if name in header_map or column in claimed:
            continue
        header_map[name] = column
        claimed.add(column)
    return header_map


def locate_header(grid: RawGrid, max_scan: int = HEADER_SCAN_ROWS) -> HeaderLocation:
    row_index, score = find_header_row(grid, max_scan)
    if score == 0:
        error = NoUsableHeader("No header row matched any known column alias")
        logger.warning("no_usable_header", detail=error.message, scanned=min(max_scan, len(grid)))
        return HeaderLocation(row_index=0, header_map={}, score=0)

    header_map = build_header_map(grid.row(row_index))
    logger.info(
        "header_located",
        row=row_index,
        score=score,
        fields=sorted(f.value for f in header_map),
    )
    return HeaderLocation(row_index=row_index, header_map=header_map, score=score)
