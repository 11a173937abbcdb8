import logging
import threading
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from jwt import PyJWKClient

from app.core.config import get_settings

logger = logging.getLogger(__name__)

ALLOWED_ROLES = {"ADMIN", "ACCOUNTANT", "WORKER", "COWORKER", "BOOKING", "VISITOR"}

# Roles allowed to upload and delete booking attachments (and the ledger rows bound to them).
ATTACHMENT_ROLES = ("ADMIN", "ACCOUNTANT", "WORKER", "COWORKER")
# Roles allowed to manage salary profiles and run the reconciler.
SALARY_MANAGER_ROLES = ("ADMIN", "ACCOUNTANT", "WORKER")
BOOKING_EDITOR_ROLES = ("ADMIN", "WORKER", "BOOKING")

_jwks_client: Optional[PyJWKClient] = None
_jwks_lock = threading.Lock()


def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    global _jwks_client
    if _jwks_client is not None:
        return _jwks_client
    with _jwks_lock:
        if _jwks_client is None:
            _jwks_client = PyJWKClient(jwks_url, cache_keys=True, lifespan=3600)
        return _jwks_client


@dataclass
class CurrentUser:
    id: str
    role: str
    email: Optional[str] = None


def _extract_role(payload: dict) -> Optional[str]:
    # Only app_metadata is server-managed; user_metadata is editable by the user.
    raw = (payload.get("app_metadata") or {}).get("role")
    if raw is None:
        return None
    role = str(raw).strip().upper()
    return role if role in ALLOWED_ROLES else None


def _decode_kwargs(settings) -> tuple[dict, dict]:
    audience = (settings.supabase_jwt_audience or "").strip()
    if audience:
        return {"audience": audience}, {"verify_aud": True}
    return {}, {"verify_aud": False}


def _decode_hs256(token: str, settings) -> Optional[dict]:
    if not settings.supabase_jwt_secret:
        return None
    kwargs, options = _decode_kwargs(settings)
    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            options=options,
            **kwargs,
        )
    except jwt.InvalidTokenError:
        return None


def _decode_es256(token: str, settings) -> Optional[dict]:
    supabase_url = (settings.supabase_url or "").rstrip("/")
    if not supabase_url:
        return None
    kwargs, options = _decode_kwargs(settings)
    try:
        client = _get_jwks_client(f"{supabase_url}/auth/v1/.well-known/jwks.json")
        signing_key = client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            options=options,
            **kwargs,
        )
    except Exception as exc:
        logger.debug("ES256 verification failed: %s", exc)
        return None


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Not authenticated")

    token = authorization.split(" ", 1)[1].strip()
    settings = get_settings()
    if not settings.supabase_jwt_secret and not settings.supabase_url:
        raise HTTPException(500, "SUPABASE_JWT_SECRET is not configured")

    try:
        alg = jwt.get_unverified_header(token).get("alg", "")
    except jwt.DecodeError:
        raise HTTPException(401, "Invalid token")

    if alg == "ES256":
        payload = _decode_es256(token, settings) or _decode_hs256(token, settings)
    else:
        payload = _decode_hs256(token, settings) or _decode_es256(token, settings)

    if payload is None or not payload.get("sub"):
        raise HTTPException(401, "Invalid token")

    role = _extract_role(payload)
    if not role:
        raise HTTPException(403, "Missing role")

    return CurrentUser(id=payload["sub"], role=role, email=payload.get("email"))


def require_roles(*roles: str):
    def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(403, "Forbidden")
        return user

    return _dependency
