"""Pydantic schemas for the receipt pipeline and the API surface.

Pydantic models validate and serialise data crossing the boundaries of
the pipeline: what the extraction service returns, what the review
session mutates, what gets committed to the ledger, and the JSON shapes
exchanged with the client. Wire names are camelCase (``fileId``,
``totalAmount``) while attributes stay snake_case; both are accepted on
input.

Amounts are always non-negative integers in minor currency units and
confidence values are always within ``[0, 1]``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ISO_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Ledger directory entities (read-only, owned by the ledger server)


class Category(CamelModel):
    id: str
    name: str
    is_income: bool = Field(default=False, alias="is_income")


class Account(CamelModel):
    id: str
    name: str
    closed: bool = False


class Payee(CamelModel):
    id: str
    name: str


# ---------------------------------------------------------------------------
# Storage


class StoredReceipt(CamelModel):
    """One stored receipt image. One ``file_id`` maps to exactly one file."""

    file_id: str
    path: str
    mime_type: str
    size_bytes: int = Field(ge=0)

    @property
    def filename(self) -> str:
        return Path(self.path).name

    @property
    def extension(self) -> str:
        return Path(self.path).suffix


# ---------------------------------------------------------------------------
# Extraction


class ExtractedExpense(CamelModel):
    """A single expense derived from a receipt. Immutable once returned."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    amount: int = Field(ge=0, description="Amount in minor currency units")
    merchant: str = ""
    date: str = Field(pattern=ISO_DATE_PATTERN)
    category_id: Optional[str] = None
    category_name: str = "Uncategorized"
    note: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class ReceiptProcessResult(CamelModel):
    expenses: List[ExtractedExpense] = Field(default_factory=list)
    total_amount: int = Field(default=0, ge=0)
    receipt_date: Optional[str] = None
    merchant: Optional[str] = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    raw_response: Optional[str] = None


# ---------------------------------------------------------------------------
# Review / commit


class EditableExpense(ExtractedExpense):
    """Session-local working copy of an extracted expense.

    Fields are replaced one at a time by the reviewer; assignments are
    validated so the amount/date/confidence invariants keep holding.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=False,
        validate_assignment=True,
    )

    id: str
    account: Optional[str] = None
    payee: Optional[str] = None


class TransactionDraft(CamelModel):
    id: str
    account: str
    date: str
    amount: int
    payee: Optional[str] = None
    category: Optional[str] = None
    notes: str = ""
    cleared: bool = False


# ---------------------------------------------------------------------------
# API request/response schemas


class UploadResponse(CamelModel):
    file_id: str
    filename: str
    size: int
    path: str


class ProcessRequest(CamelModel):
    file_id: str = Field(min_length=1)
    categories: List[Category]


class ProcessResponse(ReceiptProcessResult):
    receipt_url: str
    file_id: str
    filename: str
    extension: str


class CommitRequest(CamelModel):
    file_id: str = Field(min_length=1)
    extension: str = ""
    default_account: Optional[str] = None
    expenses: List[EditableExpense]


class CommitResponse(CamelModel):
    transactions: List[TransactionDraft]


class ReceiptServiceStatus(CamelModel):
    available: bool
    model: str
    max_size_mb: float
    allowed_types: List[str]


DataT = TypeVar("DataT")


class Envelope(BaseModel, Generic[DataT]):
    """Uniform response wrapper: ``{status, data?, message?, reason?}``."""

    status: str = "ok"
    data: Optional[DataT] = None
    message: Optional[str] = None
    reason: Optional[str] = None
