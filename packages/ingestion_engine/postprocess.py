"""
Post-processing of provider output into validated Transactions.

Provider items are untrusted: amounts may arrive as strings, signs may be
wrong, dates may be unresolved. Everything that cannot be repaired from
the original grid is dropped here, so callers only ever see finite
amounts and real calendar dates.
"""

import re
import statistics
from datetime import date
from typing import Iterable, List, Optional

import structlog

from .column_parser import is_card_payment_receipt
from .config import PipelineConfig
from .models import DateValue, Direction, Field, HeaderLocation, RawGrid, Text, Transaction
from .providers import ExtractedExpense
from .values import coerce_amount, iso_to_date, normalize_currency, parse_date, parse_date_text

logger = structlog.get_logger()

REFUND_RE = re.compile(
    r"\b(?:refund(?:ed)?|reversal|chargeback|cash\s?back|rebate|reimbursement|"
    r"returns?|returned|payment received|deposit credit|adjustment credit|"
    r"credit interest|cr)\b",
    re.IGNORECASE,
)
# Money moved into savings or investments is not a refund
INVESTMENT_RE = re.compile(
    r"\b(?:investment|invest|savings|save|special deposit|rrsp|tfsa|401k|ira|"
    r"mutual fund|stock|bond|etf)\b|\btransfer\b.*\bdeposit\b",
    re.IGNORECASE,
)


def normalize_sign(
    amount: float, direction: Optional[Direction], *texts: Optional[str]
) -> float:
    """Apply the positive-is-money-out convention."""
    if direction == Direction.CREDIT:
        return -abs(amount)
    if direction == Direction.DEBIT:
        return abs(amount)
    if amount > 0:
        combined = " ".join(t for t in texts if t)
        if REFUND_RE.search(combined) and not INVESTMENT_RE.search(combined):
            return -amount
    return amount


def flag_balance_like(
    transactions: List[Transaction], factor: float = 10.0
) -> List[Transaction]:
    """
    Return transactions whose magnitude dwarfs the median expense.

    These are usually a running balance picked up as the amount. They are
    reported, not removed: a large one-off purchase looks the same.
    """
    positives = [t.amount for t in transactions if t.amount > 0]
    if not positives:
        return []
    median = statistics.median(positives)

    flagged = [t for t in transactions if abs(t.amount) > factor * median]
    if flagged:
        logger.warning(
            "probable_running_balance",
            count=len(flagged),
            median=median,
            line_indexes=[t.line_index for t in flagged],
        )
    return flagged


class PostProcessor:
    def __init__(self, grid: RawGrid, location: HeaderLocation, config: PipelineConfig):
        self.grid = grid
        self.location = location
        self.config = config

    def recover_date(self, returned: Optional[str], line_index: Optional[int]) -> Optional[date]:
        """
        Resolve ``occurred_on``: a strict ISO value is trusted; otherwise the
        source row is re-read through the shared date routine, and the
        returned string itself is the last resort.
        """
        iso = iso_to_date(returned)
        if iso:
            return iso

        if line_index is not None and line_index >= 1:
            row_index = self.location.grid_row(line_index)
            if row_index < len(self.grid):
                if self.location.has(Field.DATE):
                    recovered = parse_date(
                        self.grid.cell(row_index, self.location.column(Field.DATE))
                    )
                    if recovered:
                        return recovered
                # Numbers are skipped: an amount would read as a serial date
                for cell in self.grid.row(row_index):
                    if isinstance(cell, (DateValue, Text)):
                        recovered = parse_date(cell)
                        if recovered:
                            return recovered

        if returned:
            return parse_date_text(returned)
        return None

    def normalize(self, item: ExtractedExpense) -> Optional[Transaction]:
        amount = coerce_amount(item.amount)
        if amount is None:
            return None

        occurred_on = self.recover_date(item.occurred_on, item.line_index)
        if occurred_on is None:
            return None

        direction = Direction(item.direction) if item.direction else None
        return Transaction(
            amount=normalize_sign(amount, direction, item.merchant, item.note),
            currency=normalize_currency(item.currency) or self.config.default_currency,
            occurred_on=occurred_on,
            merchant=item.merchant,
            payment_method=item.payment_method,
            note=item.note,
            category=item.category,
            line_index=item.line_index,
            direction=direction,
        )

    def process(self, expenses: Iterable[ExtractedExpense]) -> List[Transaction]:
        transactions: List[Transaction] = []
        invalid = 0
        card_payments = 0
        for item in expenses:
            transaction = self.normalize(item)
            if transaction is None:
                invalid += 1
                continue
            if is_card_payment_receipt(
                transaction.amount, transaction.merchant, transaction.note
            ):
                card_payments += 1
                continue
            transactions.append(transaction)

        flag_balance_like(transactions, self.config.balance_outlier_factor)
        logger.info(
            "postprocess_complete",
            kept=len(transactions),
            invalid=invalid,
            card_payments=card_payments,
        )
        return transactions
