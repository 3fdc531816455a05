"""
Core data structures shared by every pipeline stage.

Cells are an explicit tagged union: every consumer dispatches on the
concrete class instead of guessing at a raw spreadsheet value.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class DateValue:
    value: date


@dataclass(frozen=True)
class Empty:
    pass


Cell = Union[Number, Text, DateValue, Empty]

EMPTY = Empty()


@dataclass(frozen=True)
class RawGrid:
    """Immutable grid of cells, one tuple per source row."""

    rows: Tuple[Tuple[Cell, ...], ...]

    def __len__(self) -> int:
        return len(self.rows)

    def row(self, index: int) -> Tuple[Cell, ...]:
        if 0 <= index < len(self.rows):
            return self.rows[index]
        return ()

    def cell(self, row_index: int, column_index: Optional[int]) -> Cell:
        """Cell lookup that treats anything out of range as Empty."""
        if column_index is None or column_index < 0:
            return EMPTY
        row = self.row(row_index)
        if column_index < len(row):
            return row[column_index]
        return EMPTY


class Field(str, Enum):
    """Semantic columns a statement header can carry."""

    DATE = "date"
    AMOUNT = "amount"
    DEBIT = "debit"
    CREDIT = "credit"
    CURRENCY = "currency"
    DESCRIPTION = "description"
    CATEGORY = "category"
    PAYMENT_METHOD = "payment_method"


HeaderMap = Dict[Field, int]


@dataclass(frozen=True)
class HeaderLocation:
    """Where the header sits and what each column means."""

    row_index: int
    header_map: HeaderMap = field(default_factory=dict)
    score: int = 0

    def column(self, name: Field) -> Optional[int]:
        return self.header_map.get(name)

    def has(self, name: Field) -> bool:
        return name in self.header_map

    def grid_row(self, line_index: int) -> int:
        """Map a 1-based data line number back to its RawGrid row."""
        return self.row_index + line_index


class Direction(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


@dataclass(frozen=True)
class Transaction:
    """Normalized transaction. Positive amount = money out."""

    amount: float
    currency: str
    occurred_on: date
    merchant: Optional[str] = None
    payment_method: Optional[str] = None
    note: Optional[str] = None
    category: Optional[str] = None
    line_index: Optional[int] = None
    direction: Optional[Direction] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape returned to callers. Direction is never exposed."""
        payload: Dict[str, Any] = {
            "amount": self.amount,
            "currency": self.currency,
            "occurred_on": self.occurred_on.isoformat(),
        }
        optional = {
            "merchant": self.merchant,
            "payment_method": self.payment_method,
            "note": self.note,
            "category": self.category,
            "line_index": self.line_index,
        }
        payload.update({k: v for k, v in optional.items() if v is not None})
        return payload
