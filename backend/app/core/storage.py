import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import HTTPException
from supabase import create_client

from app.core.config import get_settings

logger = logging.getLogger(__name__)


def _file_extension(filename: Optional[str]) -> str:
    if not filename:
        return ""
    return Path(filename).suffix.lower()


def build_attachment_path(user_id: str, booking_id: str, filename: Optional[str]) -> str:
    """Blob paths are namespaced by the acting user and the booking."""
    token = uuid.uuid4().hex
    ext = _file_extension(filename)
    return f"{user_id}/{booking_id}/{token}{ext}"


def get_storage_client():
    settings = get_settings()
    key = settings.supabase_service_role_key or settings.supabase_key
    if not settings.supabase_url or not key:
        raise RuntimeError("Supabase credentials are not configured")
    return create_client(settings.supabase_url, key)


def _result_error(result) -> Optional[object]:
    if isinstance(result, dict):
        return result.get("error")
    return getattr(result, "error", None)


def upload_attachment_blob(path: str, content: bytes, content_type: Optional[str]) -> str:
    settings = get_settings()
    options = {"content-type": content_type} if content_type else None
    try:
        result = get_storage_client().storage.from_(settings.attachments_bucket).upload(path, content, options)
    except Exception as exc:
        logger.warning("Attachment upload failed for %s", path, exc_info=True)
        raise HTTPException(502, "Failed to upload file to storage") from exc

    if _result_error(result):
        logger.warning("Attachment upload rejected for %s: %s", path, _result_error(result))
        raise HTTPException(502, "Failed to upload file to storage")
    return path


def remove_attachment_blob(path: str) -> None:
    """Raises on failure; callers that treat removal as cleanup catch it themselves."""
    settings = get_settings()
    result = get_storage_client().storage.from_(settings.attachments_bucket).remove([path])
    error = _result_error(result)
    if error:
        raise RuntimeError(f"Storage removal failed for {path}: {error}")


def create_signed_attachment_url(path: str) -> Optional[str]:
    settings = get_settings()
    try:
        result = get_storage_client().storage.from_(settings.attachments_bucket).create_signed_url(
            path, settings.attachment_signed_url_ttl_seconds
        )
    except Exception as exc:
        raise HTTPException(502, "Failed to sign storage URL") from exc

    if isinstance(result, dict):
        return result.get("signedURL") or result.get("signedUrl")
    return getattr(result, "signed_url", None)
