"""Transaction categorization scope contracts.

Suggestions are proposals only: ``is_categorized`` stays false until a user
accepts the suggested account.
"""

from __future__ import annotations

from pydantic import BaseModel

CONFIDENCE_LEVELS = ("high", "medium", "low")


class CategorizationSuggestion(BaseModel):
    transaction_id: str
    account_code: str
    suggested_account: str
    confidence: str
    reasoning: str = ""


class CategorizationResult(BaseModel):
    success: bool = True
    message: str = ""
    categorized: int = 0
    total: int = 0
    remaining: int = 0
    has_more: bool = False
    results: list[CategorizationSuggestion] = []
    warnings: list[str] = []
    model_used: str | None = None
    attempted_models: list[str] = []
