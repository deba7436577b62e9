"""Error taxonomy shared by every extraction pipeline.

Errors that reach the HTTP layer derive from ``ExtractionError`` and carry the
status code and JSON details the API returns. ``TransportError`` and
``ProviderRejection`` never leave the fallback orchestrator.
"""

from __future__ import annotations

from typing import Any


class ExtractionError(Exception):
    status_code: int = 500

    def __init__(self, error: str, *, details: Any = None, status_code: int | None = None) -> None:
        super().__init__(error)
        self.error = error
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class TransportError(Exception):
    """Network failure or timeout while talking to a provider."""

    def __init__(self, message: str, *, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout


class ProviderRejection(Exception):
    """Non-2xx provider response."""

    RATE_LIMITED = "rate_limited"
    MODERATION = "moderation"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"

    def __init__(self, status_code: int, kind: str, body_preview: str = "") -> None:
        super().__init__(f"provider returned {status_code} ({kind})")
        self.status_code = status_code
        self.kind = kind
        self.body_preview = body_preview


class StreamError(ExtractionError):
    status_code = 502


class AllModelsExhausted(ExtractionError):
    status_code = 503

    def __init__(self, attempted_models: list[str], *, error: str | None = None) -> None:
        super().__init__(
            error or "Extraction temporarily unavailable. All AI models failed.",
            details={"attemptedModels": list(attempted_models)},
        )
        self.attempted_models = list(attempted_models)


class ExtractionParseError(ExtractionError):
    status_code = 422

    NO_STRUCTURE = "no_structure"
    EMPTY_RESULT = "empty_result"
    WRONG_SHAPE = "wrong_shape"

    def __init__(self, reason: str, message: str, *, preview: str = "") -> None:
        super().__init__(
            "Failed to parse extracted data",
            details={"reason": reason, "message": message, "preview": preview},
        )
        self.reason = reason
        self.message = message
        self.preview = preview


class RecordsRejected(ExtractionError):
    """Every extracted record failed validation; nothing was inserted."""

    status_code = 422


class DocumentTooLarge(ExtractionError):
    status_code = 413


class DocumentUnavailable(ExtractionError):
    status_code = 400


class DocumentNotFound(ExtractionError):
    status_code = 404


class ProviderNotConfigured(ExtractionError):
    status_code = 500


class CategorizationSetupError(ExtractionError):
    status_code = 400


class PersistenceFailure(ExtractionError):
    status_code = 500

    def __init__(self, summary) -> None:
        super().__init__(summary.error_message or "Failed to persist extracted records")
        self.summary = summary

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        body.update(
            {
                "insertedCount": self.summary.inserted_count,
                "totalRecords": self.summary.total,
                "skippedCount": self.summary.skipped_count,
            }
        )
        return body
