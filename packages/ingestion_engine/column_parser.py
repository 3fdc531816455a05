"""
Deterministic column parser.

The AI-free baseline: reads each data row through the HeaderMap and emits
a Transaction when a date and an amount can be resolved. Pure and total;
rows that cannot be parsed are skipped, never raised on.
"""

from typing import List, Optional, Tuple

import structlog

from .config import PipelineConfig
from .models import Cell, Direction, Field, HeaderLocation, RawGrid, Text, Transaction
from .values import cell_to_text, detect_currency, normalize_currency, parse_amount, parse_date

logger = structlog.get_logger()

# Paying off the card is not spending; these rows are dropped when negative
CARD_PAYMENT_PHRASES = (
    "payment received",
    "credit card payment",
    "card payment",
    "payment thank you",
    "bill payment",
    "autopay",
    "auto pay",
    "payment processed",
    "thank you for your payment",
)


def is_card_payment_receipt(amount: float, *texts: Optional[str]) -> bool:
    """True for a negative amount whose text reads like a card bill payment."""
    if amount >= 0:
        return False
    combined = " ".join(t for t in texts if t).lower()
    return any(phrase in combined for phrase in CARD_PAYMENT_PHRASES)


def _optional_text(cell: Cell) -> Optional[str]:
    return cell_to_text(cell) or None


def _resolve_amount(
    grid: RawGrid, location: HeaderLocation, row_index: int
) -> Tuple[Optional[float], List[Cell]]:
    """Signed amount (positive = money out) plus the cells it came from."""
    if location.has(Field.AMOUNT):
        cell = grid.cell(row_index, location.column(Field.AMOUNT))
        amount = parse_amount(cell)
        if amount is not None:
            return amount, [cell]

    debit_cell = grid.cell(row_index, location.column(Field.DEBIT))
    credit_cell = grid.cell(row_index, location.column(Field.CREDIT))
    debit = parse_amount(debit_cell)
    credit = parse_amount(credit_cell)

    if debit is None and credit is None:
        return None, []
    if credit is None:
        return abs(debit), [debit_cell]
    if debit is None:
        return -abs(credit), [credit_cell]
    return abs(debit) - abs(credit), [debit_cell, credit_cell]


def _resolve_currency(
    grid: RawGrid,
    location: HeaderLocation,
    row_index: int,
    amount_cells: List[Cell],
    default: str,
) -> str:
    if location.has(Field.CURRENCY):
        explicit = normalize_currency(
            cell_to_text(grid.cell(row_index, location.column(Field.CURRENCY)))
        )
        if explicit:
            return explicit

    for cell in amount_cells:
        if isinstance(cell, Text):
            detected = detect_currency(cell.value)
            if detected:
                return detected
    return default


def parse_row(
    grid: RawGrid, location: HeaderLocation, row_index: int, config: PipelineConfig
) -> Optional[Transaction]:
    occurred_on = parse_date(grid.cell(row_index, location.column(Field.DATE)))
    if occurred_on is None:
        return None

    amount, amount_cells = _resolve_amount(grid, location, row_index)
    if amount is None:
        return None

    return Transaction(
        amount=amount,
        currency=_resolve_currency(
            grid, location, row_index, amount_cells, config.default_currency
        ),
        occurred_on=occurred_on,
        merchant=_optional_text(grid.cell(row_index, location.column(Field.DESCRIPTION))),
        category=_optional_text(grid.cell(row_index, location.column(Field.CATEGORY))),
        payment_method=_optional_text(
            grid.cell(row_index, location.column(Field.PAYMENT_METHOD))
        ),
        line_index=row_index - location.row_index,
        direction=Direction.DEBIT if amount >= 0 else Direction.CREDIT,
    )


def parse_columns(
    grid: RawGrid, location: HeaderLocation, config: PipelineConfig
) -> List[Transaction]:
    """Parse every data row below the header. Never raises."""
    if not location.has(Field.DATE):
        logger.info("deterministic_parse_skipped", reason="no_date_column")
        return []

    transactions: List[Transaction] = []
    skipped = 0
    for row_index in range(location.row_index + 1, len(grid)):
        transaction = parse_row(grid, location, row_index, config)
        if transaction is None:
            skipped += 1
            continue
        if is_card_payment_receipt(transaction.amount, transaction.merchant):
            skipped += 1
            continue
        transactions.append(transaction)

    logger.info(
        "deterministic_parse_complete", transactions=len(transactions), skipped=skipped
    )
    return transactions
