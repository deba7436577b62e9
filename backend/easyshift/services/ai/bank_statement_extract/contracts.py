"""Bank statement extraction scope contracts."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel


class BankStatementExtractionResult(BaseModel):
    statement_upload_id: str
    status: str
    bank_name: str | None = None
    statement_period_start: date | None = None
    statement_period_end: date | None = None
    transaction_count: int = 0
    valid_transaction_count: int = 0
    invalid_transaction_count: int = 0
    inserted_count: int = 0
    warnings: list[str] = []
    total_debits: float = 0.0
    total_credits: float = 0.0
    model_used: str = ""
    attempted_models: list[str] = []
    truncated: bool = False

    @property
    def success(self) -> bool:
        return self.status != "error"
