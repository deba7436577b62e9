import logging
from typing import Optional

import httpx
from supabase import create_client

from easyshift.core.config import get_settings

logger = logging.getLogger(__name__)


class DownloadTooLarge(Exception):
    def __init__(self, limit_bytes: int):
        super().__init__(f"Document exceeds {limit_bytes} bytes")
        self.limit_bytes = limit_bytes


def get_storage_client():
    settings = get_settings()
    key = settings.supabase_service_role_key or settings.supabase_key
    if not settings.supabase_url or not key:
        raise RuntimeError("Supabase credentials are not configured")
    return create_client(settings.supabase_url, key)


def create_signed_url(bucket: str, path: str, *, client=None, expires_in: Optional[int] = None) -> str:
    """Return a short-lived signed URL for a private storage object."""
    settings = get_settings()
    client = client or get_storage_client()
    ttl = expires_in if expires_in is not None else settings.signed_url_ttl_seconds
    result = client.storage.from_(bucket).create_signed_url(path, ttl)

    if isinstance(result, dict):
        error = result.get("error")
        url = result.get("signedURL") or result.get("signedUrl") or result.get("signed_url")
    else:
        error = getattr(result, "error", None)
        url = getattr(result, "signed_url", None) or getattr(result, "signedURL", None)

    if error or not url:
        raise RuntimeError(f"Could not sign storage object {bucket}/{path}")
    return url


async def download_document(
    url: str,
    *,
    timeout_seconds: float,
    max_bytes: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> tuple[bytes, Optional[str]]:
    """Fetch ``url`` and return ``(content, content_type)``.

    Aborts with ``DownloadTooLarge`` as soon as the body passes ``max_bytes``.
    """
    async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise DownloadTooLarge(max_bytes)

            buffer = bytearray()
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) > max_bytes:
                    raise DownloadTooLarge(max_bytes)

            content_type = response.headers.get("content-type")
            if content_type:
                content_type = content_type.split(";", 1)[0].strip().lower()
            logger.debug("Downloaded %d bytes (%s)", len(buffer), content_type)
            return bytes(buffer), content_type


async def fetch_declared_size(
    url: str,
    *,
    timeout_seconds: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[int]:
    """HEAD ``url`` and return its ``content-length``, or None when the server omits it."""
    async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
        response = await client.head(url, follow_redirects=True)
        response.raise_for_status()
    declared = response.headers.get("content-length")
    if declared and declared.isdigit():
        return int(declared)
    return None
