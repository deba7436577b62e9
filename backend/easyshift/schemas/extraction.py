from datetime import date
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MediaKind(StrEnum):
    IMAGE = "image"
    PDF = "pdf"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Receipts ---


class ReceiptProcessRequest(CamelModel):
    document_id: str = Field(..., min_length=1)
    document_ref: Optional[str] = None
    media_kind: MediaKind = MediaKind.IMAGE


class ReceiptProcessResponse(CamelModel):
    success: bool
    status: str
    receipt_id: str
    vendor: Optional[str] = None
    supplier_id: Optional[str] = None
    total_amount: Optional[float] = None
    line_items_count: int
    skipped_count: int
    warnings: list[str] = []
    model_used: str
    attempted_models: list[str]
    truncated: bool = False


# --- Bank statements ---


class BankStatementProcessRequest(CamelModel):
    document_id: str = Field(..., min_length=1)
    document_ref: Optional[str] = None
    media_kind: MediaKind = MediaKind.PDF


class BankStatementProcessResponse(CamelModel):
    success: bool
    status: str
    statement_upload_id: str
    bank_name: Optional[str] = None
    statement_period_start: Optional[date] = None
    statement_period_end: Optional[date] = None
    transaction_count: int
    valid_transaction_count: int
    invalid_transaction_count: int
    inserted_count: int
    warnings: list[str] = []
    total_debits: float
    total_credits: float
    model_used: str
    attempted_models: list[str]
    truncated: bool = False


# --- Categorization ---


class CategorizeRequest(CamelModel):
    restaurant_id: str = Field(..., min_length=1)


class CategorizationSuggestionOut(CamelModel):
    transaction_id: str
    account_code: str
    suggested_account: str
    confidence: str
    reasoning: str = ""


class CategorizeResponse(CamelModel):
    success: bool
    message: str
    categorized: int
    total: int
    remaining: int
    has_more: bool
    results: list[CategorizationSuggestionOut] = []
    warnings: list[str] = []
    model_used: Optional[str] = None
    attempted_models: list[str] = []
