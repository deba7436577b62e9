"""Receipt extraction scope contracts."""

from __future__ import annotations

from pydantic import BaseModel


class ReceiptExtractionResult(BaseModel):
    """Outcome of one receipt run.

    Only line items that passed validation are stored, since receipts feed
    automatic inventory deduction. ``skipped_count`` counts the rest.
    """

    receipt_id: str
    status: str
    vendor: str | None = None
    supplier_id: str | None = None
    total_amount: float | None = None
    line_items_count: int = 0
    skipped_count: int = 0
    warnings: list[str] = []
    model_used: str = ""
    attempted_models: list[str] = []
    truncated: bool = False

    @property
    def success(self) -> bool:
        return self.status != "error"
