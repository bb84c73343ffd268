# services/share-service/fileshare/routers/storage.py

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from ..dependencies import get_db, get_current_user, get_storage, log_activity
from ..services.files import file_service
from ..services.sharing import sharing_service
from ..services.storage import StorageGateway
from ..models.database import User
from ..models.schemas import (
    StorageStats, PublicResourceResponse, PublicFolderInfo, public_file_info, user_summary,
)

router = APIRouter(prefix="/api/v1", tags=["storage"])


@router.get("/storage/stats", response_model=StorageStats)
async def get_storage_stats(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get user storage statistics (live calculation from the files table)"""
    return StorageStats(**await file_service.storage_stats(db, current_user))


@router.delete("/shares/{share_id}")
async def delete_share(
    share_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Remove a share; the granter and the recipient may both do this"""
    share = await sharing_service.revoke_share(db, share_id, current_user)

    await log_activity(
        db, current_user.id, "share_revoked", share_id,
        {"file_id": share.file_id, "folder_id": share.folder_id}, request
    )

    return {"success": True, "message": "Share removed"}


@router.get("/public/{token}", response_model=PublicResourceResponse)
async def get_public_resource(
    token: str,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
):
    """Resolve a public link (no authentication)"""
    resolved = await sharing_service.resolve_public_link(db, storage, token)
    resource = resolved["resource"]

    response = PublicResourceResponse(
        type=resolved["type"],
        owner=user_summary(resolved["owner"]),
        permission=resolved["permission"].value,
        download_url=resolved["download_url"],
    )
    if resolved["type"] == "file":
        response.file = public_file_info(resource)
    else:
        files = resolved["files"]
        response.folder = PublicFolderInfo(
            id=resource.id,
            name=resource.name,
            file_count=len(files),
            created_at=resource.created_at,
        )
        response.files = [public_file_info(f) for f in files]
    return response
