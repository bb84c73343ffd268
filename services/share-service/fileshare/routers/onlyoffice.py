# services/share-service/fileshare/routers/onlyoffice.py

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging
from ..dependencies import get_db, get_current_user, get_storage
from ..services.collaboration import collaboration_service, CALLBACK_FAILED
from ..services.storage import StorageGateway
from ..models.database import User
from ..models.schemas import EditorConfigResponse, EditorCallback

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/onlyoffice", tags=["onlyoffice"])


@router.get("/config", response_model=EditorConfigResponse)
async def get_editor_config(
    file_id: str = Query(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
):
    """Launch configuration for opening a file in the document editor"""
    return await collaboration_service.get_editor_config(db, storage, file_id, current_user)


@router.get("/download/{file_id}")
async def editor_download(
    file_id: str,
    token: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
):
    """Document-server download entry point, authorized by a scoped download token"""
    url = await collaboration_service.editor_download_url(db, storage, file_id, token)
    return RedirectResponse(url, status_code=307)


@router.post("/callback")
async def editor_callback(
    request: Request,
    fileId: Optional[str] = None,
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
):
    """Status callback from the document server. Always answers {"error": 0|1}."""
    try:
        body = EditorCallback.model_validate(await request.json()).model_dump(exclude_none=True)
    except ValueError:
        logger.error("Unreadable editor callback body for file %s", fileId)
        return CALLBACK_FAILED

    header_token = None
    if authorization and authorization.lower().startswith("bearer "):
        header_token = authorization[7:].strip()

    return await collaboration_service.handle_callback(db, storage, fileId, body, header_token)
