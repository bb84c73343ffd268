# services/share-service/fileshare/routers/files.py

from fastapi import APIRouter, Depends, File as FormFile, Form, Request, UploadFile
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import logging
from ..dependencies import get_db, get_current_user, get_storage, log_activity
from ..services.files import file_service, IncomingFile
from ..services.folders import folder_service
from ..services.sharing import sharing_service, public_url
from ..services.storage import StorageGateway
from ..models.database import User
from ..models.schemas import (
    DirectoryListing, FileResponse, UploadResponse, SharedWithMeResponse, SharedFileResponse,
    SharedFolderResponse, ShareCreate, ShareResponse, PublicLinkCreate, PublicLinkResponse,
    Breadcrumb, file_response, folder_response, share_response, user_summary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/files", tags=["files"])

@router.get("/", response_model=DirectoryListing)
async def list_files(
    folder_id: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the folders and files directly inside a folder (root when omitted)"""
    folders, files, crumbs = await folder_service.list_children(db, current_user, folder_id)
    return DirectoryListing(
        folders=[folder_response(f) for f in folders],
        files=[file_response(f) for f in files],
        breadcrumbs=[Breadcrumb(**c) for c in crumbs],
    )

@router.get("/shared", response_model=SharedWithMeResponse)
async def list_shared_with_me(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Files and folders other users shared with the caller"""
    shared = await sharing_service.shared_with_me(db, current_user)
    return SharedWithMeResponse(
        files=[
            SharedFileResponse(
                **file_response(item["resource"]).model_dump(),
                permission=item["share"].permission,
                share_id=item["share"].id,
                shared_by=user_summary(item["shared_by"]),
            )
            for item in shared["files"]
        ],
        folders=[
            SharedFolderResponse(
                **folder_response(item["resource"]).model_dump(),
                permission=item["share"].permission,
                share_id=item["share"].id,
                shared_by=user_summary(item["shared_by"]),
            )
            for item in shared["folders"]
        ],
    )

@router.post("/upload", response_model=UploadResponse)
async def upload_files(
    files: List[UploadFile] = FormFile(...),
    folder_id: Optional[str] = Form(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    request: Request = None,
):
    """Upload one or more files; the whole batch is stored or none of it is"""
    incoming = []
    for upload in files:
        # Nothing is recorded until every part has been received in full
        data = await upload.read()
        incoming.append(IncomingFile(upload.filename or "file", upload.content_type, data))
        await upload.close()

    records = await file_service.upload_files(db, storage, current_user, incoming, folder_id or None)

    logger.info("User %s uploaded %s file(s)", current_user.id, len(records))
    await log_activity(
        db, current_user.id, "files_uploaded", folder_id,
        {"files": [r.id for r in records], "bytes": sum(r.size for r in records)}, request
    )

    return UploadResponse(success=True, files=[file_response(r) for r in records])

@router.get("/{file_id}", response_model=FileResponse)
async def get_file(
    file_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get file metadata"""
    return file_response(await file_service.get_file(db, file_id, current_user))

@router.get("/{file_id}/download")
async def download_file(
    file_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    request: Request = None,
):
    """Redirect to a presigned object-store URL"""
    url = await file_service.download_url(db, storage, file_id, current_user)

    await log_activity(db, current_user.id, "file_downloaded", file_id, request=request)

    return RedirectResponse(url, status_code=307)

@router.delete("/{file_id}")
async def delete_file(
    file_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    request: Request = None,
):
    """Delete a file, its stored object and its shares"""
    deleted = await file_service.delete_file(db, storage, file_id, current_user)

    await log_activity(
        db, current_user.id, "file_deleted", file_id,
        {"name": deleted.name, "size": deleted.size}, request
    )

    return {"success": True, "message": "File deleted successfully"}

@router.get("/{file_id}/shares", response_model=List[ShareResponse])
async def list_file_shares(
    file_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await sharing_service.list_shares(db, "file", file_id, current_user)
    return [share_response(row["share"], row["shared_with"]) for row in rows]

@router.post("/{file_id}/shares", response_model=ShareResponse)
async def share_file(
    file_id: str,
    share_data: ShareCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Share a file with another user, or change the permission of an existing share"""
    share = await sharing_service.create_share(
        db, "file", file_id, current_user, share_data.email,
        share_data.permission, share_data.expires_hours
    )
    recipient_id = share.shared_with_id

    await log_activity(
        db, current_user.id, "file_shared", file_id,
        {"shared_with": recipient_id, "permission": share.permission}, request
    )

    recipient = await db.get(User, recipient_id)
    return share_response(share, recipient)

@router.post("/{file_id}/public-link", response_model=PublicLinkResponse)
async def create_file_public_link(
    file_id: str,
    link_data: Optional[PublicLinkCreate] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Generate (or regenerate) the public link for a file"""
    link_data = link_data or PublicLinkCreate()
    share = await sharing_service.create_public_link(
        db, "file", file_id, current_user, link_data.permission, link_data.expires_hours
    )

    await log_activity(
        db, current_user.id, "public_link_created", file_id,
        {"type": "file", "permission": share.permission}, request
    )

    return PublicLinkResponse(
        success=True,
        public_token=share.public_token,
        public_url=public_url(share.public_token),
        permission=share.permission,
        expires_at=share.expires_at,
        message="Public link generated successfully",
    )

@router.delete("/{file_id}/public-link")
async def revoke_file_public_link(
    file_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    revoked = await sharing_service.revoke_public_links(db, "file", file_id, current_user)

    await log_activity(
        db, current_user.id, "public_link_revoked", file_id, {"revoked": revoked}, request
    )

    return {"success": True, "revoked": revoked}
