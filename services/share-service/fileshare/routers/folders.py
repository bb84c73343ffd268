# services/share-service/fileshare/routers/folders.py

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from ..dependencies import get_db, get_current_user, get_storage, log_activity
from ..services.folders import folder_service
from ..services.sharing import sharing_service, public_url
from ..services.storage import StorageGateway
from ..models.database import User
from ..models.schemas import (
    FolderCreate, FolderUpdate, FolderResponse, ShareCreate, ShareResponse,
    PublicLinkCreate, PublicLinkResponse, folder_response, share_response,
)

router = APIRouter(prefix="/api/v1/folders", tags=["folders"])

@router.post("/", response_model=FolderResponse)
async def create_folder(
    folder_data: FolderCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Create a new folder"""
    folder = await folder_service.create_folder(
        db, folder_data.name, current_user, folder_data.parent_id
    )

    await log_activity(
        db, current_user.id, "folder_created", folder.id,
        {"name": folder.name, "parent_id": folder.parent_id}, request
    )

    return folder_response(folder)

@router.get("/{folder_id}", response_model=FolderResponse)
async def get_folder(
    folder_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get a specific folder"""
    grant = await sharing_service.resolve_access(db, "folder", folder_id, current_user)
    return folder_response(grant.resource)

@router.put("/{folder_id}", response_model=FolderResponse)
async def update_folder(
    folder_id: str,
    folder_data: FolderUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Update folder name or move to different parent"""
    folder = await folder_service.update_folder(
        db, folder_id, current_user, folder_data.name, folder_data.parent_id
    )

    await log_activity(
        db, current_user.id, "folder_updated", folder_id,
        {"name": folder.name, "parent_id": folder.parent_id}, request
    )

    return folder_response(folder)

@router.delete("/{folder_id}")
async def delete_folder(
    folder_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    request: Request = None,
):
    """Delete a folder with everything inside it"""
    summary = await folder_service.delete_folder(db, storage, folder_id, current_user)

    await log_activity(db, current_user.id, "folder_deleted", folder_id, summary, request)

    return {"success": True, "message": "Folder deleted", **summary}

@router.get("/{folder_id}/shares", response_model=List[ShareResponse])
async def list_folder_shares(
    folder_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await sharing_service.list_shares(db, "folder", folder_id, current_user)
    return [share_response(row["share"], row["shared_with"]) for row in rows]

@router.post("/{folder_id}/shares", response_model=ShareResponse)
async def share_folder(
    folder_id: str,
    share_data: ShareCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Share a folder (and everything below it) with another user"""
    share = await sharing_service.create_share(
        db, "folder", folder_id, current_user, share_data.email,
        share_data.permission, share_data.expires_hours
    )
    recipient_id = share.shared_with_id

    await log_activity(
        db, current_user.id, "folder_shared", folder_id,
        {"shared_with": recipient_id, "permission": share.permission}, request
    )

    recipient = await db.get(User, recipient_id)
    return share_response(share, recipient)

@router.post("/{folder_id}/public-link", response_model=PublicLinkResponse)
async def create_folder_public_link(
    folder_id: str,
    link_data: Optional[PublicLinkCreate] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Generate (or regenerate) the public link for a folder"""
    link_data = link_data or PublicLinkCreate()
    share = await sharing_service.create_public_link(
        db, "folder", folder_id, current_user, link_data.permission, link_data.expires_hours
    )

    await log_activity(
        db, current_user.id, "public_link_created", folder_id,
        {"type": "folder", "permission": share.permission}, request
    )

    return PublicLinkResponse(
        success=True,
        public_token=share.public_token,
        public_url=public_url(share.public_token),
        permission=share.permission,
        expires_at=share.expires_at,
        message="Public link generated successfully",
    )

@router.delete("/{folder_id}/public-link")
async def revoke_folder_public_link(
    folder_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    revoked = await sharing_service.revoke_public_links(db, "folder", folder_id, current_user)

    await log_activity(
        db, current_user.id, "public_link_revoked", folder_id, {"revoked": revoked}, request
    )

    return {"success": True, "revoked": revoked}
