from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status as http_status

from app.schemas.uploads import MissingRoomRequestOut, UploadAcceptedOut, UploadTokenPreviewOut
from app.services.blob_store import BlobStoreError, BlobStoreUnavailableError, get_blob_store
from app.services.notifier import get_notifier
from app.services.repository import RepositoryError, get_repository
from app.services.uploads import (
    MAX_UPLOAD_FILES,
    UploadItem,
    UploadTokenExpiredOrClosedError,
    UploadTokenInvalidError,
    UploadValidationError,
    accept_upload,
    preview_upload_token,
)

router = APIRouter()


@router.get("/missing-rooms", response_model=list[MissingRoomRequestOut])
async def list_missing_rooms(
    response: Response,
    property_id: str = Query(min_length=1),
    include_all: bool = Query(default=False),
    repository=Depends(get_repository),
) -> list[MissingRoomRequestOut]:
    try:
        rows = await repository.list_missing_room_requests(property_id=property_id, only_pending=not include_all)
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response.headers["Cache-Control"] = "no-store"
    return [MissingRoomRequestOut(**row) for row in rows]


@router.get("/uploads/{token}", response_model=UploadTokenPreviewOut)
async def preview_upload(token: str, response: Response, repository=Depends(get_repository)) -> UploadTokenPreviewOut:
    try:
        row = await preview_upload_token(repository, token)
    except UploadTokenInvalidError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except UploadTokenExpiredOrClosedError as exc:
        raise HTTPException(status_code=http_status.HTTP_410_GONE, detail=str(exc)) from exc
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response.headers["Cache-Control"] = "no-store"
    return UploadTokenPreviewOut(**row)


@router.post("/uploads", response_model=UploadAcceptedOut)
async def upload_files(
    token: str = Form(default=""),
    files: list[UploadFile] | None = File(default=None),
    repository=Depends(get_repository),
    blob_store=Depends(get_blob_store),
    notifier=Depends(get_notifier),
) -> UploadAcceptedOut:
    # Reject oversized forms before buffering any part.
    if not 1 <= len(files or []) <= MAX_UPLOAD_FILES:
        raise HTTPException(
            status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"between 1 and {MAX_UPLOAD_FILES} files are required",
        )
    items = [
        UploadItem(filename=upload.filename, content=await upload.read(), content_type=upload.content_type)
        for upload in files or []
    ]
    try:
        result = await accept_upload(repository, blob_store, notifier, token, items)
    except UploadValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except UploadTokenInvalidError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except UploadTokenExpiredOrClosedError as exc:
        raise HTTPException(status_code=http_status.HTTP_410_GONE, detail=str(exc)) from exc
    except BlobStoreUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except BlobStoreError as exc:
        raise HTTPException(status_code=http_status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return UploadAcceptedOut(**result)
