from __future__ import annotations

import logging
import secrets
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any

from app.services.repository import RepositoryConflictError, RepositoryNotFoundError

logger = logging.getLogger(__name__)

UPLOADABLE_STATUSES = frozenset({"pending", "emailed", "uploaded", "processing"})
MAX_UPLOAD_FILES = 5

_CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/heic": "heic",
    "application/pdf": "pdf",
}


class UploadError(Exception):
    """Base upload error."""


class UploadValidationError(UploadError):
    """Raised when the upload form itself is malformed."""


class UploadTokenInvalidError(UploadError):
    """Raised when no missing-room request matches the token."""


class UploadTokenExpiredOrClosedError(UploadError):
    """Raised when the token is past its expiry or the request stopped accepting files."""


@dataclass(slots=True)
class UploadItem:
    filename: str | None
    content: bytes
    content_type: str | None = None


def check_request_uploadable(request: dict[str, Any], now: datetime) -> None:
    expires_at = request.get("token_expires_at")
    if expires_at is None or _as_utc(now) >= _as_utc(expires_at):
        raise UploadTokenExpiredOrClosedError("upload link has expired")
    if request.get("status") not in UPLOADABLE_STATUSES:
        raise UploadTokenExpiredOrClosedError("upload link is closed")


async def validate_upload_token(repository: Any, token: str, now: datetime | None = None) -> dict[str, Any]:
    if not token or not token.strip():
        raise UploadTokenInvalidError("upload token not found")
    request = await repository.get_missing_room_request_by_token(token.strip())
    if request is None:
        raise UploadTokenInvalidError("upload token not found")
    check_request_uploadable(request, now or datetime.now(timezone.utc))
    return request


async def preview_upload_token(repository: Any, token: str, now: datetime | None = None) -> dict[str, Any]:
    current = now or datetime.now(timezone.utc)
    request = await validate_upload_token(repository, token, current)
    remaining = (_as_utc(request["token_expires_at"]) - _as_utc(current)).total_seconds()
    return {**request, "expires_in_seconds": max(0, int(remaining))}


async def accept_upload(
    repository: Any,
    blob_store: Any,
    notifier: Any,
    token: str,
    files: Sequence[UploadItem],
    now: datetime | None = None,
) -> dict[str, Any]:
    if not token or not token.strip():
        raise UploadValidationError("token is required")
    if not 1 <= len(files) <= MAX_UPLOAD_FILES:
        raise UploadValidationError(f"between 1 and {MAX_UPLOAD_FILES} files are required")
    if any(not item.content for item in files):
        raise UploadValidationError("uploaded files must not be empty")

    current = now or datetime.now(timezone.utc)
    request = await validate_upload_token(repository, token, current)
    request_id = request["id"]

    stored: list[dict[str, str]] = []
    for item in files:
        path = build_storage_path(request, item, current)
        blob = await blob_store.put(path, item.content, content_type=item.content_type or "image/jpeg")
        stored.append({"public_url": blob.public_url, "storage_path": blob.storage_path})

    to_status = "processing" if request["status"] == "processing" else "uploaded"
    try:
        await repository.complete_missing_room_upload(
            request_id=request_id,
            expected_status=request["status"],
            expected_updated_at=request.get("updated_at"),
            to_status=to_status,
            uploads=stored,
        )
    except RepositoryNotFoundError as exc:
        raise UploadTokenInvalidError("upload token not found") from exc
    except RepositoryConflictError as exc:
        logger.warning(
            "upload for request_id=%s lost a concurrent update; %s stored files left unreferenced",
            request_id,
            len(stored),
        )
        raise UploadTokenExpiredOrClosedError("upload link is closed") from exc

    urls = [item["public_url"] for item in stored]
    logger.info("accepted %s files for request_id=%s property_id=%s", len(urls), request_id, request["property_id"])
    notifier.dispatch(
        {
            "request_id": request_id,
            "property_id": request["property_id"],
            "room_key": request["room_key"],
            "room_label": request.get("room_label"),
            "floor": request.get("floor"),
            "kind": request.get("kind"),
            "images": urls,
        }
    )
    return {"ok": True, "uploaded_count": len(urls), "urls": urls}


def build_storage_path(request: dict[str, Any], item: UploadItem, now: datetime) -> str:
    stamp = int(_as_utc(now).timestamp() * 1000)
    nonce = secrets.token_hex(4)
    extension = _file_extension(item)
    return f"{request['property_id']}/{request['room_key']}/{request['id']}/{stamp}_{nonce}.{extension}"


def _file_extension(item: UploadItem) -> str:
    suffix = PurePosixPath(item.filename or "").suffix.lstrip(".").lower()
    if suffix and suffix.isalnum():
        return suffix
    return _CONTENT_TYPE_EXTENSIONS.get((item.content_type or "").lower(), "jpg")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
