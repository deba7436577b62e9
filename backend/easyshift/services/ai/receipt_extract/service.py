"""Receipt extraction service.

Reads an uploaded receipt (image or PDF) through the receipt model chain,
links the vendor to a supplier and stores the valid line items in order.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from easyshift.core.config import get_settings
from easyshift.models.restaurant import ReceiptImport, ReceiptLineItem, Supplier
from easyshift.services.ai.common.audit import log_extraction_run
from easyshift.services.ai.common.documents import load_document
from easyshift.services.ai.common.errors import ExtractionError, PersistenceFailure, RecordsRejected
from easyshift.services.ai.common.persistence import PersistenceWriter
from easyshift.services.ai.common.pipeline import (
    fail_parent,
    final_status,
    mark_processing,
    review_message,
    run_extraction,
    utcnow,
)
from easyshift.services.ai.common.providers import BaseProvider, get_provider
from easyshift.services.ai.common.registry import ModelCandidate, list_models
from easyshift.services.ai.common.request_builder import DocumentPayload, build_document_request
from easyshift.services.ai.common.validation import (
    LINE_ITEM_SCHEMA,
    ExtractedRecord,
    is_number,
    validate_records,
)
from easyshift.services.ai.receipt_extract.contracts import ReceiptExtractionResult

logger = logging.getLogger(__name__)

LIST_FIELD = "lineItems"

RECEIPT_INSTRUCTIONS = """ANALYSIS TARGET: This receipt contains itemized purchases for restaurant inventory.

EXTRACTION METHODOLOGY:
1. **Locate the itemized section** - Focus on the main purchase list (ignore headers, tax, totals, payment info)
2. **Extract ALL line items** - Every product purchase, even if formatting is unclear
3. **Identify key components**: Product name, quantity, unit of measure, price per item or total
4. **Expand abbreviations**: Common food service abbreviations (CHKN=Chicken, BROC=Broccoli, etc.)
5. **Standardize units**: Convert to standard restaurant units (lb, oz, case, each, gal, etc.)

CONFIDENCE SCORING MATRIX:
- **0.90-0.95**: Crystal clear text, complete information, standard formatting
- **0.80-0.89**: Readable with minor ambiguity in abbreviations or formatting
- **0.65-0.79**: Partially clear, some guessing required for quantities or names
- **0.40-0.64**: Poor quality text, significant interpretation needed
- **0.20-0.39**: Very unclear, major uncertainty in parsing

PATTERN RECOGNITION:
- Weight-based: "BEEF CHUCK 2.34 LB @ $8.99/LB = $20.96"
- Case quantities: "TOMATOES 6/10# CASE $24.50"
- Simple format: "MILK 1 GAL $4.99"
- Abbreviated: "CHKN BRST BNLS 5LB $32.45"

SUPPLIER DETECTION:
Look for distributor indicators such as company stamps (Sysco, US Foods, Performance Food Group),
"Distributed by" or "Packed for" text, supplier codes or route numbers.

RESPONSE FORMAT (JSON ONLY):
{
  "vendor": "Exact vendor/supplier name from receipt",
  "totalAmount": numeric_total,
  "lineItems": [
    {
      "rawText": "exact text from receipt",
      "parsedName": "standardized product name",
      "parsedQuantity": numeric_quantity,
      "parsedUnit": "standard_unit",
      "parsedPrice": numeric_price,
      "confidenceScore": realistic_score_0_to_1,
      "category": "estimated category (Produce, Meat, Dairy, etc.)"
    }
  ]
}

CRITICAL: Assign confidence scores based on actual text clarity, not wishful thinking."""


def build_receipt_body(model: ModelCandidate, document: DocumentPayload) -> dict[str, Any]:
    settings = get_settings()
    return build_document_request(
        model,
        document,
        RECEIPT_INSTRUCTIONS,
        requested_max_tokens=settings.receipt_requested_max_tokens,
    )


def find_or_create_supplier(db: Session, restaurant_id, vendor: str | None) -> Supplier | None:
    """Exact-name supplier lookup within the restaurant, created when missing."""
    if not vendor:
        return None
    supplier = db.execute(
        select(Supplier)
        .where(Supplier.restaurant_id == restaurant_id, Supplier.name == vendor)
        .limit(1)
    ).scalar_one_or_none()
    if supplier is None:
        supplier = Supplier(restaurant_id=restaurant_id, name=vendor, is_active=True)
        db.add(supplier)
        db.flush()
        logger.info("Created supplier %r for restaurant %s", vendor, restaurant_id)
    return supplier


def _line_item_row(receipt_id, record: ExtractedRecord) -> ReceiptLineItem:
    fields = record.normalized_fields
    return ReceiptLineItem(
        receipt_id=receipt_id,
        raw_text=record.raw_text,
        parsed_name=fields.get("name"),
        parsed_quantity=fields.get("quantity"),
        parsed_unit=fields.get("unit"),
        parsed_price=fields.get("price"),
        category=fields.get("category"),
        confidence_score=record.confidence_score,
    )


def _vendor(parsed: dict[str, Any]) -> str | None:
    vendor = parsed.get("vendor")
    if vendor is None:
        return None
    vendor = str(vendor).strip()
    return vendor[:255] or None


async def process_receipt(
    db: Session,
    receipt: ReceiptImport,
    *,
    media_kind: str,
    document_ref: str | None = None,
    provider: BaseProvider | None = None,
    actor_id: str | None = None,
    download_transport: httpx.AsyncBaseTransport | None = None,
) -> ReceiptExtractionResult:
    settings = get_settings()
    try:
        provider = provider or get_provider()
        document = await load_document(
            media_kind=media_kind,
            document_ref=document_ref,
            storage_bucket=settings.receipt_bucket,
            storage_path=receipt.storage_path,
            file_size=receipt.file_size,
            max_bytes=settings.document_max_bytes,
            download_timeout_seconds=settings.receipt_download_timeout_seconds,
            filename="receipt.pdf" if media_kind == "pdf" else "receipt",
            transport=download_transport,
        )
        mark_processing(db, receipt)

        run = await run_extraction(
            db,
            scope="receipt",
            entity_id=receipt.id,
            actor_id=actor_id,
            provider=provider,
            models=list_models("receipt"),
            build_body=lambda model: build_receipt_body(model, document),
            max_content_chars=settings.receipt_max_content_chars,
            list_field=LIST_FIELD,
        )
        parsed = run.parsed
        outcome = run.outcome

        report = validate_records(parsed[LIST_FIELD], LINE_ITEM_SCHEMA)
        valid_records = report.valid_records
        vendor = _vendor(parsed)
        total_amount = float(parsed["totalAmount"]) if is_number(parsed.get("totalAmount")) else None
        status = final_status(report.valid_count, report.invalid_count)

        supplier = find_or_create_supplier(db, receipt.restaurant_id, vendor)
        summary = {
            "vendor_name": vendor,
            "total_amount": total_amount,
            "supplier_id": supplier.id if supplier is not None else None,
            "raw_ocr_data": parsed,
            "status": status,
            "processed_at": utcnow(),
            "error_message": review_message(report.invalid_count, "line item"),
        }

        writer = PersistenceWriter(db, batch_size=settings.persistence_batch_size)
        committed = writer.commit(
            receipt,
            summary=summary,
            records=valid_records,
            build_row=lambda record: _line_item_row(receipt.id, record),
            skipped_count=report.invalid_count,
            failure_note=f"{report.invalid_count} line items were skipped due to validation errors.",
        )

        log_extraction_run(
            db,
            scope="receipt",
            entity_id=receipt.id,
            provider=provider.name,
            outcome="persistence_error" if committed.failed else status,
            model_used=outcome.model_used,
            attempted_models=outcome.attempted_models,
            attempts=outcome.attempts,
            raw_text=outcome.text,
            counts={
                "lineItems": len(report.records),
                "valid": report.valid_count,
                "invalid": report.invalid_count,
                "inserted": committed.inserted_count,
            },
            error=committed.error_message,
            actor_id=actor_id,
        )

        if committed.failed:
            raise PersistenceFailure(committed)
        if report.valid_count == 0:
            raise RecordsRejected(
                "No valid line items found on the receipt",
                details={"warnings": report.warnings},
            )
    except (PersistenceFailure, RecordsRejected):
        raise
    except ExtractionError as exc:
        fail_parent(db, receipt, exc.error)
        raise

    logger.info(
        "Receipt %s processed: vendor=%r items=%d skipped=%d model=%s",
        receipt.id,
        vendor,
        committed.inserted_count,
        report.invalid_count,
        outcome.model_used,
    )
    return ReceiptExtractionResult(
        receipt_id=str(receipt.id),
        status=status,
        vendor=vendor,
        supplier_id=str(supplier.id) if supplier is not None else None,
        total_amount=total_amount,
        line_items_count=committed.inserted_count,
        skipped_count=report.invalid_count,
        warnings=report.warnings,
        model_used=outcome.model_used,
        attempted_models=outcome.attempted_models,
        truncated=outcome.truncated,
    )
