"""Pydantic schemas for the ingestion domain."""

from pydantic import BaseModel, Field
from typing import Optional


class ExpenseOut(BaseModel):
    """A normalized transaction. Positive amount = money out."""

    amount: float
    currency: str
    occurred_on: str = Field(description="ISO date, YYYY-MM-DD")
    merchant: Optional[str] = None
    payment_method: Optional[str] = None
    note: Optional[str] = None
    category: Optional[str] = None
    line_index: Optional[int] = None


class PreviewOut(BaseModel):
    """Fingerprint of the redacted text that would be sent to a provider."""

    promptHash: str
    length: int
    head: str
    tail: Optional[str] = None


class UsageOut(BaseModel):
    preview: Optional[PreviewOut] = None


class ParseSpreadsheetResponse(BaseModel):
    """Response from statement parsing."""

    success: bool = True
    expenses: list[ExpenseOut]
    usage: Optional[UsageOut] = None
