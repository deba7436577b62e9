"""Bank transaction auto-categorization.

Picks a batch of uncategorized transactions, asks the categorization model
chain for an account per transaction and stores the answers as pending
suggestions.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from easyshift.core.config import get_settings
from easyshift.models.restaurant import BankTransaction, ChartOfAccount
from easyshift.services.ai.common.audit import log_extraction_run
from easyshift.services.ai.common.errors import CategorizationSetupError
from easyshift.services.ai.common.pipeline import run_extraction
from easyshift.services.ai.common.providers import BaseProvider, get_provider
from easyshift.services.ai.common.registry import ModelCandidate, list_models
from easyshift.services.ai.common.request_builder import build_chat_request
from easyshift.services.ai.transaction_categorize.contracts import (
    CONFIDENCE_LEVELS,
    CategorizationResult,
    CategorizationSuggestion,
)

logger = logging.getLogger(__name__)

LIST_FIELD = "categorizations"
UNCATEGORIZED_ACCOUNT_NAMES = ("Uncategorized Expense", "Uncategorized Income")
UNCATEGORIZED_ACCOUNT_CODES = ("9100", "9200")

RESPONSE_FORMAT: dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "transaction_categorizations",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "categorizations": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "transaction_id": {"type": "string", "description": "UUID of the transaction"},
                            "account_code": {"type": "string", "description": "Account code from chart of accounts"},
                            "confidence": {
                                "type": "string",
                                "enum": list(CONFIDENCE_LEVELS),
                                "description": "Confidence level of categorization",
                            },
                            "reasoning": {"type": "string", "description": "Brief explanation for categorization"},
                        },
                        "required": ["transaction_id", "account_code", "confidence", "reasoning"],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["categorizations"],
            "additionalProperties": False,
        },
    },
}


def _payee(txn: Any) -> str:
    return txn.merchant_name or txn.normalized_payee or "N/A"


def build_user_prompt(
    transactions: list[BankTransaction],
    accounts: list[ChartOfAccount],
    examples: list[tuple[BankTransaction, ChartOfAccount]],
) -> str:
    lines = ["CHART OF ACCOUNTS:"]
    lines.extend(f"- {acc.account_code}: {acc.account_name} ({acc.account_type})" for acc in accounts)

    if examples:
        lines.append("")
        lines.append("EXAMPLE CATEGORIZATIONS (learn from these patterns):")
        for idx, (txn, acc) in enumerate(examples, start=1):
            lines.append(f"{idx}. Description: {txn.description or 'N/A'}")
            lines.append(f"   Merchant: {_payee(txn)}")
            lines.append(f"   Amount: ${txn.amount}")
            lines.append(f"   -> Categorized as: {acc.account_code} - {acc.account_name} ({acc.account_type})")

    lines.append("")
    lines.append("TRANSACTIONS TO CATEGORIZE:")
    for idx, txn in enumerate(transactions, start=1):
        lines.append(f"{idx}. ID: {txn.id}")
        lines.append(f"   Description: {txn.description or 'N/A'}")
        lines.append(f"   Merchant: {_payee(txn)}")
        lines.append(f"   Amount: ${txn.amount}")
        lines.append(f"   Date: {txn.transaction_date}")

    lines.append("")
    lines.append("Categorize each transaction with the appropriate account code, confidence level, and reasoning.")
    return "\n".join(lines)


def build_categorization_body(model: ModelCandidate, user_prompt: str) -> dict[str, Any]:
    settings = get_settings()
    return build_chat_request(
        model,
        user_prompt,
        requested_max_tokens=settings.categorize_requested_max_tokens,
        response_format=RESPONSE_FORMAT,
    )


def _uncategorized_account_ids(db: Session, restaurant_id) -> list:
    return list(
        db.execute(
            select(ChartOfAccount.id).where(
                ChartOfAccount.restaurant_id == restaurant_id,
                ChartOfAccount.account_name.in_(UNCATEGORIZED_ACCOUNT_NAMES),
                ChartOfAccount.is_active.is_(True),
            )
        ).scalars()
    )


def _needs_categorization(restaurant_id, uncategorized_ids: list):
    category_filter = BankTransaction.category_id.is_(None)
    if uncategorized_ids:
        category_filter = or_(category_filter, BankTransaction.category_id.in_(uncategorized_ids))
    return (
        BankTransaction.restaurant_id == restaurant_id,
        category_filter,
        BankTransaction.suggested_category_id.is_(None),
    )


def _categorizable_accounts(db: Session, restaurant_id) -> list[ChartOfAccount]:
    return list(
        db.execute(
            select(ChartOfAccount)
            .where(
                ChartOfAccount.restaurant_id == restaurant_id,
                ChartOfAccount.is_active.is_(True),
                ChartOfAccount.account_code.not_in(UNCATEGORIZED_ACCOUNT_CODES),
                ChartOfAccount.account_name.not_in(UNCATEGORIZED_ACCOUNT_NAMES),
            )
            .order_by(ChartOfAccount.account_code)
        ).scalars()
    )


def _missing_accounts_error(db: Session, restaurant_id) -> CategorizationSetupError:
    all_accounts = list(
        db.execute(select(ChartOfAccount).where(ChartOfAccount.restaurant_id == restaurant_id)).scalars()
    )
    if not all_accounts:
        return CategorizationSetupError(
            "No chart of accounts found. Please set up your chart of accounts first in the Accounting section."
        )
    active = [acc for acc in all_accounts if acc.is_active]
    proper = [
        acc
        for acc in all_accounts
        if acc.account_code not in UNCATEGORIZED_ACCOUNT_CODES and acc.account_name not in UNCATEGORIZED_ACCOUNT_NAMES
    ]
    diagnostics = {"totalAccounts": len(all_accounts), "activeAccounts": len(active), "categorizable": len(proper)}
    logger.error("No categorizable accounts for restaurant %s: %s", restaurant_id, diagnostics)
    if not active:
        message = "All chart of accounts are inactive. Please activate accounts in the Accounting section."
    elif not proper:
        message = "Only uncategorized accounts exist. Please add proper accounts to your chart of accounts."
    else:
        message = "No active categorizable accounts found. Please activate accounts in the Accounting section."
    return CategorizationSetupError(message, details=diagnostics)


def _examples(db: Session, restaurant_id, uncategorized_ids: list, limit: int) -> list[tuple[BankTransaction, ChartOfAccount]]:
    query = (
        select(BankTransaction, ChartOfAccount)
        .join(ChartOfAccount, BankTransaction.category_id == ChartOfAccount.id)
        .where(
            BankTransaction.restaurant_id == restaurant_id,
            BankTransaction.is_categorized.is_(True),
            BankTransaction.category_id.is_not(None),
        )
    )
    if uncategorized_ids:
        query = query.where(BankTransaction.category_id.not_in(uncategorized_ids))
    query = query.order_by(BankTransaction.transaction_date.desc()).limit(limit)
    return [(txn, acc) for txn, acc in db.execute(query).all()]


def apply_suggestions(
    db: Session,
    categorizations: list[Any],
    transactions: list[BankTransaction],
    accounts: list[ChartOfAccount],
) -> tuple[list[CategorizationSuggestion], list[str]]:
    """Validate model suggestions and write the accepted ones; returns (accepted, warnings)."""
    accounts_by_code = {acc.account_code: acc for acc in accounts}
    transactions_by_id = {str(txn.id): txn for txn in transactions}
    accepted: list[CategorizationSuggestion] = []
    warnings: list[str] = []
    seen: set[str] = set()

    for index, item in enumerate(categorizations, start=1):
        if not isinstance(item, dict):
            warnings.append(f"Suggestion #{index} - not an object")
            continue
        txn_id = str(item.get("transaction_id") or "").strip()
        code = str(item.get("account_code") or "").strip()
        confidence = str(item.get("confidence") or "").strip().lower()
        reasoning = str(item.get("reasoning") or "").strip()

        account = accounts_by_code.get(code)
        txn = transactions_by_id.get(txn_id)
        if account is None:
            logger.warning("Account code %r not in chart of accounts; available: %s", code, ", ".join(accounts_by_code))
            warnings.append(f"Suggestion #{index} - account code {code or 'N/A'} not found in chart of accounts")
            continue
        if txn is None:
            warnings.append(f"Suggestion #{index} - transaction {txn_id or 'N/A'} is not in this batch")
            continue
        if txn_id in seen:
            warnings.append(f"Suggestion #{index} - duplicate suggestion for transaction {txn_id}")
            continue
        if confidence not in CONFIDENCE_LEVELS:
            warnings.append(f"Suggestion #{index} - invalid confidence: {confidence or 'N/A'}")
            continue

        seen.add(txn_id)
        txn.suggested_category_id = account.id
        txn.ai_confidence = confidence
        txn.ai_reasoning = reasoning or None
        txn.is_categorized = False
        db.add(txn)
        accepted.append(
            CategorizationSuggestion(
                transaction_id=txn_id,
                account_code=account.account_code,
                suggested_account=account.account_name,
                confidence=confidence,
                reasoning=reasoning,
            )
        )

    db.commit()
    return accepted, warnings


async def categorize_transactions(
    db: Session,
    restaurant_id,
    *,
    provider: BaseProvider | None = None,
    actor_id: str | None = None,
) -> CategorizationResult:
    settings = get_settings()
    provider = provider or get_provider()

    uncategorized_ids = _uncategorized_account_ids(db, restaurant_id)
    criteria = _needs_categorization(restaurant_id, uncategorized_ids)
    transactions = list(
        db.execute(
            select(BankTransaction)
            .where(*criteria)
            .order_by(BankTransaction.transaction_date.desc())
            .limit(settings.categorize_batch_limit)
        ).scalars()
    )
    if not transactions:
        return CategorizationResult(
            message=(
                "No transactions need AI categorization. All transactions either have categories "
                "or already have AI suggestions pending review."
            ),
        )

    remaining_before = db.execute(select(func.count(BankTransaction.id)).where(*criteria)).scalar_one()

    accounts = _categorizable_accounts(db, restaurant_id)
    if not accounts:
        raise _missing_accounts_error(db, restaurant_id)

    examples = _examples(db, restaurant_id, uncategorized_ids, settings.categorize_example_limit)
    logger.info(
        "Categorizing %d transactions for restaurant %s with %d examples",
        len(transactions),
        restaurant_id,
        len(examples),
    )
    user_prompt = build_user_prompt(transactions, accounts, examples)

    run = await run_extraction(
        db,
        scope="categorize",
        entity_id=restaurant_id,
        actor_id=actor_id,
        provider=provider,
        models=list_models("categorize"),
        build_body=lambda model: build_categorization_body(model, user_prompt),
        max_content_chars=settings.categorize_max_content_chars,
        list_field=LIST_FIELD,
    )

    accepted, warnings = apply_suggestions(db, run.parsed[LIST_FIELD], transactions, accounts)
    for warning in warnings:
        logger.warning("Categorization: %s", warning)

    remaining = max(0, remaining_before - len(accepted))
    has_more = remaining > 0
    if has_more:
        message = (
            f"AI suggested categories for {len(accepted)} transactions. "
            f"{remaining} more need categorization - click again to continue."
        )
    else:
        message = f"AI suggested categories for {len(accepted)} transactions. All transactions have been processed!"

    log_extraction_run(
        db,
        scope="categorize",
        entity_id=restaurant_id,
        provider=provider.name,
        outcome="processed",
        model_used=run.outcome.model_used,
        attempted_models=run.outcome.attempted_models,
        attempts=run.outcome.attempts,
        raw_text=run.outcome.text,
        counts={"total": len(transactions), "categorized": len(accepted), "rejected": len(warnings)},
        actor_id=actor_id,
    )

    return CategorizationResult(
        message=message,
        categorized=len(accepted),
        total=len(transactions),
        remaining=remaining,
        has_more=has_more,
        results=accepted,
        warnings=warnings,
        model_used=run.outcome.model_used,
        attempted_models=run.outcome.attempted_models,
    )
