"""Provider request bodies (OpenAI-compatible chat completions)."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any

from .registry import ModelCandidate

MEDIA_IMAGE = "image"
MEDIA_PDF = "pdf"
MEDIA_KINDS = (MEDIA_IMAGE, MEDIA_PDF)

TEMPERATURE = 0.1
PDF_PARSER_PLUGIN = {"id": "file-parser", "pdf": {"engine": "mistral-ocr"}}


@dataclass(frozen=True)
class DocumentPayload:
    """A loaded document: inline bytes, or a remote URL the provider fetches itself."""

    media_kind: str
    mime_type: str
    data: bytes | None = None
    url: str | None = None
    filename: str = "document"

    def __post_init__(self) -> None:
        if self.media_kind not in MEDIA_KINDS:
            raise ValueError(f"Unsupported media kind: {self.media_kind!r}")
        if (self.data is None) == (self.url is None):
            raise ValueError("DocumentPayload needs exactly one of data or url")

    @property
    def size(self) -> int | None:
        return len(self.data) if self.data is not None else None

    def as_data_uri(self) -> str:
        if self.data is None:
            raise ValueError("Remote documents have no inline data")
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def _media_part(document: DocumentPayload) -> dict[str, Any]:
    if document.media_kind == MEDIA_PDF:
        return {
            "type": "file",
            "file": {"file_data": document.as_data_uri(), "filename": document.filename},
        }
    url = document.url if document.url is not None else document.as_data_uri()
    return {"type": "image_url", "image_url": {"url": url}}


def build_document_request(
    model: ModelCandidate,
    document: DocumentPayload,
    instructions: str,
    *,
    requested_max_tokens: int,
) -> dict[str, Any]:
    """Build a streaming chat request asking *model* to read *document*.

    PDFs are always sent inline and carry the file-parser plugin hint so scanned
    pages are OCR'd by the provider.
    """
    body: dict[str, Any] = {
        "model": model.id,
        "messages": [
            {"role": "system", "content": model.system_prompt},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": instructions},
                    _media_part(document),
                ],
            },
        ],
        "temperature": TEMPERATURE,
        "max_tokens": model.clamp_max_tokens(requested_max_tokens),
        "stream": True,
    }
    if document.media_kind == MEDIA_PDF:
        body["plugins"] = [dict(PDF_PARSER_PLUGIN)]
    return body


def build_chat_request(
    model: ModelCandidate,
    user_prompt: str,
    *,
    requested_max_tokens: int,
    response_format: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Text-only streaming request, optionally constrained by a JSON schema."""
    body: dict[str, Any] = {
        "model": model.id,
        "messages": [
            {"role": "system", "content": model.system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "temperature": TEMPERATURE,
        "max_tokens": model.clamp_max_tokens(requested_max_tokens),
        "stream": True,
    }
    if response_format is not None:
        body["response_format"] = response_format
    return body
