"""Batched persistence of extracted records under a parent upload row."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .validation import ExtractedRecord

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50

RowFactory = Callable[[ExtractedRecord], Any]


@dataclass(frozen=True)
class CommitSummary:
    inserted_count: int
    skipped_count: int
    total: int
    failed: bool = False
    error_message: str | None = None


class PersistenceWriter:
    """Writes the parent summary first, then child rows in ordered batches.

    Child rows keep the record's original ordinal in ``line_sequence`` even when
    some records were filtered out before the insert.
    """

    def __init__(self, db: Session, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.db = db
        self.batch_size = batch_size

    def update_parent(self, parent: Any, summary: dict[str, Any]) -> None:
        for key, value in summary.items():
            setattr(parent, key, value)
        self.db.add(parent)
        self.db.commit()

    def commit(
        self,
        parent: Any,
        *,
        summary: dict[str, Any],
        records: Sequence[ExtractedRecord],
        build_row: RowFactory,
        skipped_count: int = 0,
        failure_note: str = "",
    ) -> CommitSummary:
        total = len(records)
        try:
            self.update_parent(parent, summary)
        except SQLAlchemyError:
            logger.exception("Failed to write the extraction summary on %s", type(parent).__name__)
            self.db.rollback()
            message = f"Failed to save the extraction summary; none of {total} records were inserted."
            return self._fail(
                parent, message, inserted=0, total=total, skipped_count=skipped_count, failure_note=failure_note
            )

        inserted = 0
        for start in range(0, total, self.batch_size):
            batch = records[start : start + self.batch_size]
            batch_number = start // self.batch_size + 1
            try:
                self._insert_batch([self._row(build_row, record) for record in batch])
            except SQLAlchemyError:
                logger.exception("Failed to insert batch %d (%d rows)", batch_number, len(batch))
                self.db.rollback()
                message = f"Failed to insert records after committing {inserted} of {total}."
                return self._fail(
                    parent, message, inserted=inserted, total=total, skipped_count=skipped_count, failure_note=failure_note
                )
            inserted += len(batch)
            logger.info("Inserted %d/%d records", inserted, total)

        return CommitSummary(inserted_count=inserted, skipped_count=skipped_count, total=total)

    @staticmethod
    def _row(build_row: RowFactory, record: ExtractedRecord) -> Any:
        row = build_row(record)
        row.line_sequence = record.ordinal
        return row

    def _insert_batch(self, rows: list[Any]) -> None:
        self.db.add_all(rows)
        self.db.flush()
        self.db.commit()

    def _fail(
        self,
        parent: Any,
        message: str,
        *,
        inserted: int,
        total: int,
        skipped_count: int,
        failure_note: str,
    ) -> CommitSummary:
        if failure_note:
            message = f"{message} {failure_note}"
        self._mark_failed(parent, message)
        return CommitSummary(
            inserted_count=inserted,
            skipped_count=skipped_count,
            total=total,
            failed=True,
            error_message=message,
        )

    def _mark_failed(self, parent: Any, message: str) -> None:
        try:
            parent.status = "error"
            parent.error_message = message
            self.db.add(parent)
            self.db.commit()
        except SQLAlchemyError:
            logger.exception("Could not record persistence failure on parent row")
            self.db.rollback()
