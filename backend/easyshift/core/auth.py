import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

import jwt
from fastapi import Header, HTTPException
from jwt import PyJWKClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from easyshift.core.config import get_settings
from easyshift.models.restaurant import UserRestaurant

logger = logging.getLogger(__name__)

RECEIPT_ROLES = ("owner", "manager", "chef")
FINANCE_ROLES = ("owner", "manager")

# Thread-safe JWKS client cache (initialised lazily, lives for process lifetime).
_jwks_client: Optional[PyJWKClient] = None
_jwks_lock = threading.Lock()


def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    """Return a cached PyJWKClient (with built-in key caching)."""
    global _jwks_client
    if _jwks_client is not None:
        return _jwks_client
    with _jwks_lock:
        if _jwks_client is not None:
            return _jwks_client
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True, lifespan=3600)
        return _jwks_client


@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None


def _decode_options(settings):
    audience = (settings.supabase_jwt_audience or "").strip()
    decode_kwargs = {}
    options = {}
    if audience:
        decode_kwargs["audience"] = audience
        options["verify_aud"] = True
    else:
        options["verify_aud"] = False
    return decode_kwargs, options


def _try_hs256(token: str, settings, decode_kwargs: dict, options: dict):
    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            options=options,
            **decode_kwargs,
        )
    except jwt.InvalidTokenError:
        return None


def _try_es256(token: str, settings, decode_kwargs: dict, options: dict):
    """Verify against the Supabase JWKS endpoint. Returns payload or None."""
    supabase_url = (settings.supabase_url or "").rstrip("/")
    if not supabase_url:
        return None
    jwks_url = f"{supabase_url}/auth/v1/.well-known/jwks.json"
    try:
        client = _get_jwks_client(jwks_url)
        signing_key = client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            options=options,
            **decode_kwargs,
        )
    except (jwt.InvalidTokenError, jwt.PyJWKClientError) as exc:
        logger.debug("ES256 verification failed: %s", exc)
        return None


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing bearer token")

    token = authorization.split(" ", 1)[1].strip()
    settings = get_settings()

    if not settings.supabase_jwt_secret and not settings.supabase_url:
        raise HTTPException(500, "SUPABASE_JWT_SECRET is not configured")

    decode_kwargs, options = _decode_options(settings)

    # Peek at the header to pick the verification order and avoid a JWKS round trip.
    try:
        header = jwt.get_unverified_header(token)
    except jwt.DecodeError:
        raise HTTPException(401, "Invalid token")

    alg = header.get("alg", "")

    payload = None
    if alg == "ES256":
        payload = _try_es256(token, settings, decode_kwargs, options)
        if payload is None and settings.supabase_jwt_secret:
            payload = _try_hs256(token, settings, decode_kwargs, options)
    else:
        if settings.supabase_jwt_secret:
            payload = _try_hs256(token, settings, decode_kwargs, options)
        if payload is None:
            payload = _try_es256(token, settings, decode_kwargs, options)

    if payload is None:
        raise HTTPException(401, "Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(401, "Invalid token")

    return CurrentUser(id=user_id, email=payload.get("email"))


def _as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def require_restaurant_access(
    db: Session,
    user: CurrentUser,
    restaurant_id,
    roles: Iterable[str],
) -> str:
    """Raise 403 unless ``user`` holds one of ``roles`` in ``restaurant_id``.

    Returns the membership role so callers can record it in the audit trail.
    """
    user_uuid = _as_uuid(user.id)
    restaurant_uuid = _as_uuid(restaurant_id)
    if user_uuid is None or restaurant_uuid is None:
        raise HTTPException(403, "Forbidden")

    role = db.execute(
        select(UserRestaurant.role).where(
            UserRestaurant.user_id == user_uuid,
            UserRestaurant.restaurant_id == restaurant_uuid,
        )
    ).scalar_one_or_none()

    if role is None or role not in set(roles):
        logger.info(
            "Restaurant access denied: user=%s restaurant=%s role=%s",
            user.id,
            restaurant_id,
            role,
        )
        raise HTTPException(403, "Forbidden")
    return role
