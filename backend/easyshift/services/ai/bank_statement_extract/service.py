"""Bank statement extraction service.

Statements feed a human review queue: every transaction is validated and
reported, totals come from valid transactions only, and flagged lines are
inserted only when ``BANK_STATEMENT_INSERT_FLAGGED_LINES`` is on.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx
from sqlalchemy.orm import Session

from easyshift.core.config import get_settings
from easyshift.models.restaurant import BankStatementLine, BankStatementUpload
from easyshift.services.ai.bank_statement_extract.contracts import BankStatementExtractionResult
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
    TRANSACTION_SCHEMA,
    ExtractedRecord,
    is_number,
    parse_iso_date,
    validate_records,
)

logger = logging.getLogger(__name__)

LIST_FIELD = "transactions"

BANK_STATEMENT_INSTRUCTIONS = """ANALYSIS TARGET: This is a bank statement PDF containing transaction history.

CRITICAL REQUIREMENTS:
1. Extract EVERY SINGLE TRANSACTION from the statement - even if some fields are missing or unclear
2. Capture transaction dates, descriptions, amounts (debits/credits), and running balance if available
3. Identify the bank name and statement period
4. Include transactions even if the amount is unclear. Use null for missing amounts so the user can review them.

EXTRACTION METHODOLOGY:
1. Scan the ENTIRE document - read all pages from start to finish
2. For each transaction identify (use null if a field cannot be determined):
   - Transaction date (YYYY-MM-DD)
   - Description/Payee
   - Amount (negative for debits, positive for credits)
   - Transaction type (debit, credit, or unknown)
   - Running balance (if shown)
3. Preserve chronological order
4. When in doubt, include it: a transaction with null fields is better than a skipped one

AMOUNT EXTRACTION EXAMPLES:
- "09/19 DEPOSIT $1,234.56" -> amount: 1234.56, type: credit
- "Payment to VENDOR -$500.00" -> amount: -500.00, type: debit
- "ACH TRANSFER 250.00 DR" -> amount: -250.00, type: debit
- "Interest Earned 15.23 CR" -> amount: 15.23, type: credit
- "CHECK #1234    $75.00-" -> amount: -75.00, type: debit
- "08/31 OD Interest Charge" -> amount: null, description: "OD Interest Charge"

CONFIDENCE SCORING:
- 0.90-0.95: Crystal clear, all fields present
- 0.80-0.89: Readable, minor ambiguity
- 0.65-0.79: Partially clear, some interpretation
- 0.40-0.64: Challenging to read
- 0.10-0.39: Very unclear or missing critical fields

RESPONSE FORMAT (JSON ONLY - NO EXTRA TEXT):
{
  "bankName": "Name of the bank from statement header",
  "statementPeriodStart": "YYYY-MM-DD",
  "statementPeriodEnd": "YYYY-MM-DD",
  "accountNumber": "Last 4 digits only if visible",
  "openingBalance": numeric_amount,
  "closingBalance": numeric_amount,
  "transactions": [
    {
      "date": "YYYY-MM-DD" or null,
      "description": "Transaction description/payee",
      "amount": numeric_amount or null,
      "transactionType": "debit" | "credit" | "unknown",
      "balance": numeric_running_balance or null,
      "confidenceScore": 0.0-1.0
    }
  ]
}

Return ONLY valid, complete JSON including ALL transactions from ALL pages."""


def build_bank_statement_body(model: ModelCandidate, document: DocumentPayload) -> dict[str, Any]:
    settings = get_settings()
    return build_document_request(
        model,
        document,
        BANK_STATEMENT_INSTRUCTIONS,
        requested_max_tokens=settings.bank_statement_requested_max_tokens,
    )


def statement_totals(records: list[ExtractedRecord]) -> tuple[float, float]:
    """``(total_debits, total_credits)`` over valid records with an amount."""
    debits = 0.0
    credits = 0.0
    for record in records:
        if record.has_validation_error:
            continue
        amount = record.normalized_fields.get("amount")
        if not is_number(amount):
            continue
        if amount < 0:
            debits += abs(amount)
        elif amount > 0:
            credits += amount
    return round(debits, 2), round(credits, 2)


def _last4(value: Any) -> str | None:
    digits = re.sub(r"\D", "", str(value or ""))
    return digits[-4:] or None


def _optional_text(value: Any, limit: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text[:limit] or None


def _statement_line_row(upload_id, record: ExtractedRecord) -> BankStatementLine:
    fields = record.normalized_fields
    return BankStatementLine(
        statement_upload_id=upload_id,
        transaction_date=fields.get("date"),
        description=fields.get("description") or "Unknown",
        amount=fields.get("amount"),
        transaction_type=fields.get("transaction_type") or "unknown",
        balance=fields.get("balance"),
        confidence_score=record.confidence_score,
        has_validation_error=record.has_validation_error,
        validation_errors=record.validation_errors,
    )


async def process_bank_statement(
    db: Session,
    upload: BankStatementUpload,
    *,
    media_kind: str = "pdf",
    document_ref: str | None = None,
    provider: BaseProvider | None = None,
    actor_id: str | None = None,
    download_transport: httpx.AsyncBaseTransport | None = None,
) -> BankStatementExtractionResult:
    settings = get_settings()
    try:
        provider = provider or get_provider()
        document = await load_document(
            media_kind=media_kind,
            document_ref=document_ref,
            storage_bucket=settings.bank_statement_bucket,
            storage_path=upload.storage_path,
            file_size=upload.file_size,
            max_bytes=settings.document_max_bytes,
            download_timeout_seconds=settings.bank_statement_download_timeout_seconds,
            filename="bank_statement.pdf",
            transport=download_transport,
        )
        mark_processing(db, upload)

        run = await run_extraction(
            db,
            scope="bank_statement",
            entity_id=upload.id,
            actor_id=actor_id,
            provider=provider,
            models=list_models("bank_statement"),
            build_body=lambda model: build_bank_statement_body(model, document),
            max_content_chars=settings.bank_statement_max_content_chars,
            list_field=LIST_FIELD,
        )
        parsed = run.parsed
        outcome = run.outcome

        report = validate_records(parsed[LIST_FIELD], TRANSACTION_SCHEMA)
        total_debits, total_credits = statement_totals(report.records)
        status = final_status(report.valid_count, report.invalid_count)
        bank_name = _optional_text(parsed.get("bankName"))
        period_start = parse_iso_date(parsed.get("statementPeriodStart"))
        period_end = parse_iso_date(parsed.get("statementPeriodEnd"))

        if settings.bank_statement_insert_flagged_lines:
            to_insert = report.records
            skipped = 0
            failure_note = ""
        else:
            to_insert = report.valid_records
            skipped = report.invalid_count
            failure_note = f"{report.invalid_count} transactions were skipped due to validation errors."

        summary = {
            "bank_name": bank_name,
            "statement_period_start": period_start,
            "statement_period_end": period_end,
            "account_number_last4": _last4(parsed.get("accountNumber")),
            "opening_balance": parsed["openingBalance"] if is_number(parsed.get("openingBalance")) else None,
            "closing_balance": parsed["closingBalance"] if is_number(parsed.get("closingBalance")) else None,
            "raw_ocr_data": parsed,
            "status": status,
            "processed_at": utcnow(),
            "transaction_count": len(report.records),
            "successful_transaction_count": report.valid_count,
            "failed_transaction_count": report.invalid_count,
            "total_debits": total_debits,
            "total_credits": total_credits,
            "error_message": review_message(report.invalid_count, "transaction"),
        }

        writer = PersistenceWriter(db, batch_size=settings.persistence_batch_size)
        committed = writer.commit(
            upload,
            summary=summary,
            records=to_insert,
            build_row=lambda record: _statement_line_row(upload.id, record),
            skipped_count=skipped,
            failure_note=failure_note,
        )

        log_extraction_run(
            db,
            scope="bank_statement",
            entity_id=upload.id,
            provider=provider.name,
            outcome="persistence_error" if committed.failed else status,
            model_used=outcome.model_used,
            attempted_models=outcome.attempted_models,
            attempts=outcome.attempts,
            raw_text=outcome.text,
            counts={
                "transactions": len(report.records),
                "valid": report.valid_count,
                "invalid": report.invalid_count,
                "inserted": committed.inserted_count,
                "totalDebits": total_debits,
                "totalCredits": total_credits,
            },
            error=committed.error_message,
            actor_id=actor_id,
        )

        if committed.failed:
            raise PersistenceFailure(committed)
        if report.valid_count == 0:
            raise RecordsRejected(
                "No valid transactions found in the bank statement",
                details={"warnings": report.warnings, "insertedCount": committed.inserted_count},
            )
    except (PersistenceFailure, RecordsRejected):
        raise
    except ExtractionError as exc:
        fail_parent(db, upload, exc.error)
        raise

    logger.info(
        "Statement %s processed: bank=%r transactions=%d valid=%d invalid=%d debits=%.2f credits=%.2f",
        upload.id,
        bank_name,
        len(report.records),
        report.valid_count,
        report.invalid_count,
        total_debits,
        total_credits,
    )
    return BankStatementExtractionResult(
        statement_upload_id=str(upload.id),
        status=status,
        bank_name=bank_name,
        statement_period_start=period_start,
        statement_period_end=period_end,
        transaction_count=len(report.records),
        valid_transaction_count=report.valid_count,
        invalid_transaction_count=report.invalid_count,
        inserted_count=committed.inserted_count,
        warnings=report.warnings,
        total_debits=total_debits,
        total_credits=total_credits,
        model_used=outcome.model_used,
        attempted_models=outcome.attempted_models,
        truncated=outcome.truncated,
    )
