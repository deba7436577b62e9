"""Document extraction endpoints: receipts, bank statements, transaction categorization."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from easyshift.core.auth import (
    FINANCE_ROLES,
    RECEIPT_ROLES,
    CurrentUser,
    get_current_user,
    require_restaurant_access,
)
from easyshift.core.config import get_settings
from easyshift.core.dependencies import get_db
from easyshift.models.restaurant import BankStatementUpload, ReceiptImport
from easyshift.schemas.extraction import (
    BankStatementProcessRequest,
    BankStatementProcessResponse,
    CategorizationSuggestionOut,
    CategorizeRequest,
    CategorizeResponse,
    ReceiptProcessRequest,
    ReceiptProcessResponse,
)
from easyshift.services.ai.bank_statement_extract.service import process_bank_statement
from easyshift.services.ai.common.errors import DocumentNotFound
from easyshift.services.ai.receipt_extract.service import process_receipt
from easyshift.services.ai.transaction_categorize.service import categorize_transactions

logger = logging.getLogger(__name__)

router = APIRouter()


def _ensure_ai_extraction_enabled() -> None:
    settings = get_settings()
    if not settings.enable_ai_extraction:
        raise HTTPException(404, "Not found")


def _parse_uuid(value: str, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(400, f"Invalid {field}")


@router.post(
    "/receipts/process",
    response_model=ReceiptProcessResponse,
    response_model_by_alias=True,
    summary="Extract line items from an uploaded receipt",
)
async def process_receipt_endpoint(
    body: ReceiptProcessRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    _ensure_ai_extraction_enabled()

    receipt = db.get(ReceiptImport, _parse_uuid(body.document_id, "documentId"))
    if receipt is None:
        raise DocumentNotFound("Receipt not found")
    require_restaurant_access(db, user, receipt.restaurant_id, RECEIPT_ROLES)

    result = await process_receipt(
        db,
        receipt,
        media_kind=body.media_kind.value,
        document_ref=body.document_ref,
        actor_id=user.id,
    )
    return ReceiptProcessResponse(
        success=result.success,
        status=result.status,
        receipt_id=result.receipt_id,
        vendor=result.vendor,
        supplier_id=result.supplier_id,
        total_amount=result.total_amount,
        line_items_count=result.line_items_count,
        skipped_count=result.skipped_count,
        warnings=result.warnings,
        model_used=result.model_used,
        attempted_models=result.attempted_models,
        truncated=result.truncated,
    )


@router.post(
    "/bank-statements/process",
    response_model=BankStatementProcessResponse,
    response_model_by_alias=True,
    summary="Extract transactions from an uploaded bank statement",
)
async def process_bank_statement_endpoint(
    body: BankStatementProcessRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    _ensure_ai_extraction_enabled()

    upload = db.get(BankStatementUpload, _parse_uuid(body.document_id, "documentId"))
    if upload is None:
        raise DocumentNotFound("Bank statement upload not found")
    require_restaurant_access(db, user, upload.restaurant_id, FINANCE_ROLES)

    result = await process_bank_statement(
        db,
        upload,
        media_kind=body.media_kind.value,
        document_ref=body.document_ref,
        actor_id=user.id,
    )
    return BankStatementProcessResponse(
        success=result.success,
        status=result.status,
        statement_upload_id=result.statement_upload_id,
        bank_name=result.bank_name,
        statement_period_start=result.statement_period_start,
        statement_period_end=result.statement_period_end,
        transaction_count=result.transaction_count,
        valid_transaction_count=result.valid_transaction_count,
        invalid_transaction_count=result.invalid_transaction_count,
        inserted_count=result.inserted_count,
        warnings=result.warnings,
        total_debits=result.total_debits,
        total_credits=result.total_credits,
        model_used=result.model_used,
        attempted_models=result.attempted_models,
        truncated=result.truncated,
    )


@router.post(
    "/transactions/categorize",
    response_model=CategorizeResponse,
    response_model_by_alias=True,
    summary="Suggest chart-of-accounts categories for uncategorized bank transactions",
)
async def categorize_transactions_endpoint(
    body: CategorizeRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    _ensure_ai_extraction_enabled()

    restaurant_id = _parse_uuid(body.restaurant_id, "restaurantId")
    require_restaurant_access(db, user, restaurant_id, FINANCE_ROLES)

    result = await categorize_transactions(db, restaurant_id, actor_id=user.id)
    return CategorizeResponse(
        success=result.success,
        message=result.message,
        categorized=result.categorized,
        total=result.total,
        remaining=result.remaining,
        has_more=result.has_more,
        results=[CategorizationSuggestionOut(**item.model_dump()) for item in result.results],
        warnings=result.warnings,
        model_used=result.model_used,
        attempted_models=result.attempted_models,
    )
