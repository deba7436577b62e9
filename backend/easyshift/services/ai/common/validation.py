"""Per-record validation of model output.

Untrusted dicts from the model become ``ExtractedRecord`` values. A record is
never dropped: failures are attached as ``validation_errors`` and reported as
warnings, and the caller decides what to persist.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

_DATE_SHAPE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TRANSACTION_TYPES = ("debit", "credit")
RAW_TEXT_LIMIT = 1000


class ExtractedRecord(BaseModel):
    ordinal: int
    raw_text: str = ""
    normalized_fields: dict[str, Any] = {}
    confidence_score: float = 0.0
    validation_errors: dict[str, str] | None = None

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp_confidence(value)

    @field_validator("validation_errors")
    @classmethod
    def _empty_errors_are_none(cls, value: dict[str, str] | None) -> dict[str, str] | None:
        return value or None

    @property
    def has_validation_error(self) -> bool:
        return bool(self.validation_errors)


@dataclass(frozen=True)
class RecordSchema:
    """Field names a record kind is read from."""

    label: str
    name_field: str
    name_key: str
    amount_field: str
    amount_key: str
    quantity_field: str | None = None
    date_field: str | None = None
    optional_numeric: tuple[tuple[str, str], ...] = ()
    passthrough: tuple[tuple[str, str], ...] = ()
    type_field: str | None = None


LINE_ITEM_SCHEMA = RecordSchema(
    label="Line item",
    name_field="parsedName",
    name_key="name",
    amount_field="parsedPrice",
    amount_key="price",
    quantity_field="parsedQuantity",
    passthrough=(("parsedUnit", "unit"), ("category", "category")),
)

TRANSACTION_SCHEMA = RecordSchema(
    label="Transaction",
    name_field="description",
    name_key="description",
    amount_field="amount",
    amount_key="amount",
    date_field="date",
    optional_numeric=(("balance", "balance"),),
    type_field="transactionType",
)


@dataclass
class ValidationReport:
    records: list[ExtractedRecord] = field(default_factory=list)
    valid_count: int = 0
    invalid_count: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def valid_records(self) -> list[ExtractedRecord]:
        return [record for record in self.records if not record.has_validation_error]

    @property
    def invalid_records(self) -> list[ExtractedRecord]:
        return [record for record in self.records if record.has_validation_error]


def is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def clamp_confidence(value: Any) -> float:
    if not is_number(value):
        return 0.0
    return min(1.0, max(0.0, float(value)))


def parse_iso_date(value: Any) -> date | None:
    """Return a ``date`` for a strict ``YYYY-MM-DD`` string, else None."""
    if not isinstance(value, str) or not _DATE_SHAPE.match(value.strip()):
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _raw_text(raw: Any) -> str:
    if isinstance(raw, dict) and isinstance(raw.get("rawText"), str) and raw["rawText"].strip():
        return raw["rawText"][:RAW_TEXT_LIMIT]
    try:
        return json.dumps(raw, default=str)[:RAW_TEXT_LIMIT]
    except (TypeError, ValueError):
        return str(raw)[:RAW_TEXT_LIMIT]


def _transaction_type(value: Any, amount: Any) -> str:
    kind = str(value or "").strip().lower()
    if kind in _TRANSACTION_TYPES:
        return kind
    if is_number(amount) and amount < 0:
        return "debit"
    if is_number(amount) and amount > 0:
        return "credit"
    return "unknown"


def validate_record(raw: Any, ordinal: int, schema: RecordSchema) -> tuple[ExtractedRecord, list[str]]:
    """Validate one raw record; returns the record and its warning strings."""
    errors: dict[str, str] = {}
    normalized: dict[str, Any] = {}

    if not isinstance(raw, dict):
        errors["record"] = "Record is not an object"
        record = ExtractedRecord(ordinal=ordinal, raw_text=_raw_text(raw), validation_errors=errors)
        return record, [f"{schema.label} #{ordinal} - record is not an object"]

    name = _text(raw.get(schema.name_field))
    subject = f'{schema.label} #{ordinal} "{name or "Unknown"}"'
    warnings: list[str] = []

    if name is None:
        errors[schema.name_key] = f"Missing {schema.name_key}"
        warnings.append(f"{schema.label} #{ordinal} - missing {schema.name_key}")
    normalized[schema.name_key] = name

    if schema.date_field:
        raw_date = raw.get(schema.date_field)
        parsed_date = parse_iso_date(raw_date)
        if raw_date in (None, ""):
            errors["date"] = "Missing date"
            warnings.append(f"{subject} - missing date")
        elif parsed_date is None:
            errors["date"] = f"Invalid date format: {raw_date} (expected YYYY-MM-DD)"
            warnings.append(f"{subject} - invalid date format: {raw_date}")
        normalized["date"] = parsed_date

    amount = raw.get(schema.amount_field)
    if amount is None:
        errors[schema.amount_key] = f"Missing or null {schema.amount_key}"
        warnings.append(f"{subject} - no {schema.amount_key} found")
    elif not is_number(amount):
        errors[schema.amount_key] = f"Invalid {schema.amount_key} format: {amount}"
        warnings.append(f"{subject} - invalid {schema.amount_key}: {amount}")
    normalized[schema.amount_key] = float(amount) if is_number(amount) else None

    if schema.quantity_field:
        quantity = raw.get(schema.quantity_field)
        if quantity is None:
            errors["quantity"] = "Missing or null quantity"
            warnings.append(f"{subject} - no quantity found")
        elif not is_number(quantity):
            errors["quantity"] = f"Invalid quantity format: {quantity}"
            warnings.append(f"{subject} - invalid quantity: {quantity}")
        normalized["quantity"] = float(quantity) if is_number(quantity) else None

    for source, key in schema.optional_numeric:
        value = raw.get(source)
        if value is None:
            normalized[key] = None
        elif is_number(value):
            normalized[key] = float(value)
        else:
            normalized[key] = None
            errors[key] = f"Invalid {key} format: {value}"
            warnings.append(f"{subject} - invalid {key}: {value}")

    for source, key in schema.passthrough:
        normalized[key] = _text(raw.get(source))

    if schema.type_field:
        normalized["transaction_type"] = _transaction_type(raw.get(schema.type_field), amount)

    record = ExtractedRecord(
        ordinal=ordinal,
        raw_text=_raw_text(raw),
        normalized_fields=normalized,
        confidence_score=raw.get("confidenceScore"),
        validation_errors=errors,
    )
    return record, warnings


def validate_records(raw_records: list[Any], schema: RecordSchema) -> ValidationReport:
    """Validate every raw record, keeping input order and 1-based ordinals."""
    report = ValidationReport()
    for ordinal, raw in enumerate(raw_records, start=1):
        record, warnings = validate_record(raw, ordinal, schema)
        report.records.append(record)
        report.warnings.extend(warnings)
        if record.has_validation_error:
            report.invalid_count += 1
        else:
            report.valid_count += 1

    if report.warnings:
        logger.warning(
            "%s validation: %d valid, %d invalid (first warning: %s)",
            schema.label,
            report.valid_count,
            report.invalid_count,
            report.warnings[0],
        )
    return report
