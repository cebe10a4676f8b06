import mimetypes
import posixpath
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile

from bzr_portal.app.api.deps import get_storage_service
from bzr_portal.app.core.auth import CurrentAccount, get_current_account
from bzr_portal.app.core.constants import USER_FOLDERS
from bzr_portal.app.core.logging import get_logger
from bzr_portal.app.core.metrics import uploads_rejected_total
from bzr_portal.app.core.settings import get_settings
from bzr_portal.app.schemas import DocumentResponse, MessageResponse, StorageInfoResponse, UploadResponse
from bzr_portal.app.services.object_store import StorageServiceError
from bzr_portal.app.services.storage_quota import StorageQuotaService, account_prefix

router = APIRouter()
logger = get_logger(__name__)


def _handle_service_error(e: StorageServiceError):
    """Convert service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/info", response_model=StorageInfoResponse)
async def get_storage_info(
    account: CurrentAccount = Depends(get_current_account),
    storage: StorageQuotaService = Depends(get_storage_service),
):
    """Allowance, usage and referral bonus of the caller."""
    try:
        info = await storage.get_user_storage_info(account.id, account.is_pro)
    except StorageServiceError as e:
        _handle_service_error(e)
    return StorageInfoResponse.model_validate(info)


@router.get("/folders", response_model=List[str])
async def get_folders():
    return USER_FOLDERS


@router.post("/documents", response_model=UploadResponse)
async def upload_document(
    file: UploadFile = File(...),
    folder: str = Form(...),
    account: CurrentAccount = Depends(get_current_account),
    storage: StorageQuotaService = Depends(get_storage_service),
):
    max_bytes = get_settings().MAX_UPLOAD_BYTES
    body = await file.read(max_bytes + 1)
    if len(body) > max_bytes:
        uploads_rejected_total.labels(reason="too_large").inc()
        raise HTTPException(status_code=413, detail="Fajl je prevelik")

    content_type = file.content_type or "application/octet-stream"
    try:
        key = await storage.upload_document(
            account.id,
            folder,
            file.filename or "",
            body,
            content_type,
            account.is_pro,
        )
    except StorageServiceError as e:
        _handle_service_error(e)
    return UploadResponse(key=key, size_bytes=len(body))


@router.get("/documents", response_model=List[DocumentResponse])
async def list_documents(
    folder: Optional[str] = Query(None),
    account: CurrentAccount = Depends(get_current_account),
    storage: StorageQuotaService = Depends(get_storage_service),
):
    """Caller's documents; keys are relative to the caller's root."""
    try:
        files = await storage.list_documents(account.id, folder)
    except StorageServiceError as e:
        _handle_service_error(e)
    prefix = account_prefix(account.id)
    return [
        DocumentResponse(key=f.key[len(prefix):], size_bytes=f.size_bytes)
        for f in files
    ]


@router.get("/documents/download")
async def download_document(
    key: str = Query(..., min_length=1),
    account: CurrentAccount = Depends(get_current_account),
    storage: StorageQuotaService = Depends(get_storage_service),
):
    try:
        content = await storage.download_document(account.id, key)
    except StorageServiceError as e:
        _handle_service_error(e)
    filename = posixpath.basename(key)
    media_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


@router.delete("/documents", response_model=MessageResponse)
async def delete_document(
    key: str = Query(..., min_length=1),
    account: CurrentAccount = Depends(get_current_account),
    storage: StorageQuotaService = Depends(get_storage_service),
):
    try:
        await storage.delete_document(account.id, key)
    except StorageServiceError as e:
        _handle_service_error(e)
    return MessageResponse(message="Dokument je obrisan")
