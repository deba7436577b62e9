"""Turn a request's document reference into a ``DocumentPayload``."""

from __future__ import annotations

import base64
import binascii
import logging
import re

import httpx

from easyshift.core.storage import DownloadTooLarge, create_signed_url, download_document, fetch_declared_size

from .errors import DocumentTooLarge, DocumentUnavailable
from .request_builder import MEDIA_PDF, DocumentPayload

logger = logging.getLogger(__name__)

_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[\w-]+=[^;,]*)*)(?P<b64>;base64)?,(?P<data>.*)$", re.S)
_DEFAULT_MIME = {"image": "image/jpeg", "pdf": "application/pdf"}


def _too_large(max_bytes: int, size: int | None = None) -> DocumentTooLarge:
    limit_mb = max_bytes / (1024 * 1024)
    if size is not None:
        message = f"File is too large ({size / (1024 * 1024):.2f}MB). Maximum file size is {limit_mb:.0f}MB."
    else:
        message = f"File is too large. Maximum file size is {limit_mb:.0f}MB."
    return DocumentTooLarge(
        message,
        details="Please split the document into smaller files or contact support.",
    )


def decode_data_uri(uri: str, media_kind: str, *, max_bytes: int, filename: str) -> DocumentPayload:
    match = _DATA_URI.match(uri.strip())
    if not match or not match.group("b64"):
        raise DocumentUnavailable("Document data must be a base64 data URI")
    try:
        data = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DocumentUnavailable("Document data is not valid base64", details=str(exc)) from exc
    if not data:
        raise DocumentUnavailable("Document data is empty")
    if len(data) > max_bytes:
        raise _too_large(max_bytes, len(data))
    mime = (match.group("mime") or _DEFAULT_MIME[media_kind]).lower()
    return DocumentPayload(media_kind=media_kind, mime_type=mime, data=data, filename=filename)


async def _check_remote_size(
    url: str,
    *,
    max_bytes: int,
    timeout_seconds: float,
    transport: httpx.AsyncBaseTransport | None,
) -> None:
    # The provider fetches remote images itself; a HEAD keeps oversized files from reaching it.
    try:
        size = await fetch_declared_size(url, timeout_seconds=timeout_seconds, transport=transport)
    except httpx.HTTPError as exc:
        logger.warning("Could not check the size of %s: %s", url.split("?", 1)[0], exc)
        return
    if size is not None and size > max_bytes:
        raise _too_large(max_bytes, size)


async def load_document(
    *,
    media_kind: str,
    document_ref: str | None,
    storage_bucket: str,
    storage_path: str | None,
    file_size: int | None,
    max_bytes: int,
    download_timeout_seconds: float,
    filename: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DocumentPayload:
    """Resolve the document before any model call.

    A known ``file_size`` is checked first. Without ``document_ref`` the stored
    object is signed. Remote PDFs are downloaded and inlined; remote images are
    handed to the provider by URL after a HEAD size check when ``file_size``
    is unknown.
    """
    if file_size and file_size > max_bytes:
        raise _too_large(max_bytes, file_size)

    ref = (document_ref or "").strip()
    if not ref:
        if not storage_path:
            raise DocumentUnavailable("A document reference is required")
        try:
            ref = create_signed_url(storage_bucket, storage_path)
        except RuntimeError as exc:
            logger.exception("Could not sign %s/%s", storage_bucket, storage_path)
            raise DocumentUnavailable("Failed to access the stored document", details=str(exc)) from exc

    if ref.startswith("data:"):
        return decode_data_uri(ref, media_kind, max_bytes=max_bytes, filename=filename)

    if not ref.startswith(("https://", "http://")):
        raise DocumentUnavailable("Unsupported document reference")

    if media_kind != MEDIA_PDF:
        if not file_size:
            await _check_remote_size(
                ref, max_bytes=max_bytes, timeout_seconds=download_timeout_seconds, transport=transport
            )
        return DocumentPayload(media_kind=media_kind, mime_type=_DEFAULT_MIME[media_kind], url=ref, filename=filename)

    try:
        data, content_type = await download_document(
            ref,
            timeout_seconds=download_timeout_seconds,
            max_bytes=max_bytes,
            transport=transport,
        )
    except DownloadTooLarge as exc:
        raise _too_large(max_bytes) from exc
    except httpx.TimeoutException as exc:
        raise DocumentUnavailable(
            "PDF download timeout",
            details=f"The PDF took too long to download (>{download_timeout_seconds:.0f}s)",
        ) from exc
    except httpx.HTTPError as exc:
        raise DocumentUnavailable("Failed to fetch PDF for processing", details=str(exc)) from exc

    if not data:
        raise DocumentUnavailable("Downloaded document is empty")
    logger.info("Downloaded PDF: %.2fMB (%s)", len(data) / (1024 * 1024), content_type)
    return DocumentPayload(media_kind=media_kind, mime_type="application/pdf", data=data, filename=filename)
