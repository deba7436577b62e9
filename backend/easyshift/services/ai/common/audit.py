"""Extraction audit: one ``audit_logs`` row per pipeline run."""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from easyshift.core.config import get_settings
from easyshift.models.restaurant import AuditLog

from .fallback import AttemptRecord

logger = logging.getLogger(__name__)

SCOPE_ACTIONS: dict[str, str] = {
    "receipt": "AI_RECEIPT_EXTRACTED",
    "bank_statement": "AI_BANK_STATEMENT_EXTRACTED",
    "categorize": "AI_TRANSACTIONS_CATEGORIZED",
}

SCOPE_ENTITIES: dict[str, str] = {
    "receipt": "receipt_import",
    "bank_statement": "bank_statement_upload",
    "categorize": "restaurant",
}


def create_audit_log(
    db: Session,
    *,
    entity_type: str,
    entity_id,
    action: str,
    new_value: dict[str, Any] | None,
    actor_type: str,
    actor_id: str | None,
    metadata: dict[str, Any] | None = None,
) -> None:
    db.add(
        AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            new_value=new_value,
            actor_type=actor_type,
            actor_id=actor_id,
            audit_meta=metadata,
        )
    )


def log_extraction_run(
    db: Session,
    *,
    scope: str,
    entity_id,
    provider: str,
    outcome: str,
    model_used: str | None,
    attempted_models: list[str],
    attempts: list[AttemptRecord],
    raw_text: str | None = None,
    counts: dict[str, Any] | None = None,
    error: str | None = None,
    actor_id: str | None = None,
) -> None:
    """Record an extraction run. Never raises.

    The raw response is only hashed unless ``AI_DEBUG_STORE_RAW=true``.
    """
    settings = get_settings()

    metadata: dict[str, Any] = {
        "scope": scope,
        "provider": provider,
        "outcome": outcome,
        "model": model_used,
        "attempted_models": list(attempted_models),
        "attempts": [attempt.as_dict() for attempt in attempts],
    }
    if raw_text is not None:
        metadata["response_hash"] = hashlib.sha256(raw_text.encode()).hexdigest()
        metadata["response_chars"] = len(raw_text)
        if settings.ai_debug_store_raw:
            metadata["response_raw"] = raw_text
    if error:
        metadata["error"] = error

    try:
        create_audit_log(
            db,
            entity_type=SCOPE_ENTITIES.get(scope, "ai"),
            entity_id=entity_id,
            action=SCOPE_ACTIONS.get(scope, "AI_RUN"),
            new_value=counts,
            actor_type="USER" if actor_id else "SYSTEM",
            actor_id=actor_id,
            metadata=metadata,
        )
        db.commit()
    except SQLAlchemyError:
        logger.exception("Failed to write audit log for scope=%s", scope)
        db.rollback()
