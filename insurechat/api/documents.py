# =============================================================================
# Documents API — Insurance Document Upload and Listing
# =============================================================================
#
# ENDPOINTS:
#   GET  /documents                — the caller's documents, newest first
#   POST /documents                — upload a PDF or CSV (multipart)
#   GET  /documents/{id}/download  — absolute download link
#
# Storage and validation live in services/documents.py.
# =============================================================================

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from insurechat.api.deps import get_current_user
from insurechat.config import Settings, get_settings
from insurechat.db.engine import get_async_session
from insurechat.models.responses import DocumentResponse, DownloadResponse
from insurechat.services.documents import (
    DocumentValidationError,
    build_download_url,
    get_document,
    list_documents,
    store_document,
)
from insurechat.services.identity import CurrentUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])


@router.get(
    "",
    response_model=list[DocumentResponse],
    summary="List my documents",
)
async def list_documents_endpoint(
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> list[DocumentResponse]:
    sources = await list_documents(session, user.id)
    return [DocumentResponse.model_validate(s) for s in sources]


@router.post(
    "",
    response_model=DocumentResponse,
    status_code=201,
    summary="Upload an insurance document",
    description="Accepts PDF and CSV files up to the configured size limit.",
)
async def upload_document_endpoint(
    file: UploadFile = File(..., description="PDF or CSV file"),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> DocumentResponse:
    content = await file.read()
    try:
        source = await store_document(
            session,
            settings,
            user_id=user.id,
            filename=file.filename,
            content_type=file.content_type,
            content=content,
        )
    except DocumentValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return DocumentResponse.model_validate(source)


@router.get(
    "/{document_id}/download",
    response_model=DownloadResponse,
    summary="Download link for a document",
)
async def download_document_endpoint(
    document_id: int,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> DownloadResponse:
    source = await get_document(session, user.id, document_id)
    if source is None:
        raise HTTPException(
            status_code=404, detail=f"Document {document_id} not found.",
        )
    return DownloadResponse(
        url=build_download_url(source.file_path, settings.download_base_url),
    )
