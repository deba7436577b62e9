"""Steps shared by the extraction pipelines."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from easyshift.core.config import get_settings

from .audit import log_extraction_run
from .errors import AllModelsExhausted, ExtractionParseError
from .fallback import BodyBuilder, FallbackOrchestrator, FallbackOutcome
from .json_tools import recover
from .providers import BaseProvider
from .registry import ModelCandidate

logger = logging.getLogger(__name__)

STATUS_PROCESSING = "processing"
STATUS_PROCESSED = "processed"
STATUS_PARTIAL = "partial_success"
STATUS_ERROR = "error"


@dataclass(frozen=True)
class ExtractionRun:
    outcome: FallbackOutcome
    parsed: dict[str, Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def final_status(valid_count: int, invalid_count: int) -> str:
    if valid_count > 0 and invalid_count > 0:
        return STATUS_PARTIAL
    if valid_count > 0:
        return STATUS_PROCESSED
    return STATUS_ERROR


def review_message(invalid_count: int, noun: str) -> str | None:
    if invalid_count <= 0:
        return None
    return f"{invalid_count} {noun}(s) have validation errors that need user review and correction."


def mark_processing(db: Session, parent: Any) -> None:
    parent.status = STATUS_PROCESSING
    parent.error_message = None
    db.add(parent)
    db.commit()


def fail_parent(db: Session, parent: Any, message: str) -> None:
    """Best-effort ``error`` status on the parent row; the caller re-raises."""
    try:
        db.rollback()
        parent.status = STATUS_ERROR
        parent.error_message = message[:2000]
        db.add(parent)
        db.commit()
    except SQLAlchemyError:
        logger.exception("Could not mark %s as failed", type(parent).__name__)
        db.rollback()


async def run_extraction(
    db: Session,
    *,
    scope: str,
    entity_id,
    actor_id: str | None,
    provider: BaseProvider,
    models: Sequence[ModelCandidate],
    build_body: BodyBuilder,
    max_content_chars: int,
    list_field: str,
) -> ExtractionRun:
    """Run the fallback chain and recover the ``list_field`` payload.

    Failed runs are audited here; successful runs are audited by the caller
    once the records are persisted.
    """
    settings = get_settings()
    orchestrator = FallbackOrchestrator(
        provider,
        models,
        build_body,
        max_content_chars=max_content_chars,
        timeout_seconds=settings.ai_provider_timeout_seconds,
        backoff_base_seconds=settings.ai_backoff_base_seconds,
        scope=scope,
    )

    try:
        outcome = await orchestrator.run()
    except AllModelsExhausted as exc:
        log_extraction_run(
            db,
            scope=scope,
            entity_id=entity_id,
            provider=provider.name,
            outcome="all_exhausted",
            model_used=None,
            attempted_models=exc.attempted_models,
            attempts=orchestrator.attempts,
            error=exc.error,
            actor_id=actor_id,
        )
        raise

    logger.info(
        "[%s] %s produced %d chars (truncated=%s)",
        scope,
        outcome.model.name,
        len(outcome.text),
        outcome.truncated,
    )

    try:
        parsed = recover(outcome.text, list_field)
    except ExtractionParseError as exc:
        logger.error("[%s] failed to parse model output (%s): %.200s", scope, exc.reason, exc.preview)
        log_extraction_run(
            db,
            scope=scope,
            entity_id=entity_id,
            provider=provider.name,
            outcome="parse_error",
            model_used=outcome.model_used,
            attempted_models=outcome.attempted_models,
            attempts=outcome.attempts,
            raw_text=outcome.text,
            error=f"{exc.reason}: {exc.message}",
            actor_id=actor_id,
        )
        raise

    return ExtractionRun(outcome=outcome, parsed=parsed)
