# services/share-service/fileshare/routers/settings.py

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from ..dependencies import get_db, require_admin, log_activity
from ..services.system_settings import system_settings_service
from ..models.database import User, SystemSettings
from ..models.schemas import SystemSettingsResponse, SystemSettingsUpdate

router = APIRouter(prefix="/api/v1/settings", tags=["settings"])


def _settings_response(row: SystemSettings) -> SystemSettingsResponse:
    # The editor secret itself is never returned
    return SystemSettingsResponse(
        max_file_size_mb=row.max_file_size_mb,
        max_storage_gb=row.max_storage_gb,
        allow_public_sharing=row.allow_public_sharing,
        allowed_file_types=row.allowed_file_types,
        blocked_file_types=row.blocked_file_types,
        onlyoffice_enabled=row.onlyoffice_enabled,
        onlyoffice_url=row.onlyoffice_url,
        onlyoffice_edit_enabled=row.onlyoffice_edit_enabled,
        onlyoffice_coedit=row.onlyoffice_coedit,
        onlyoffice_secret_set=bool(system_settings_service.editor_secret(row)),
    )


@router.get("/general", response_model=SystemSettingsResponse)
async def get_general_settings(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return _settings_response(await system_settings_service.get(db))


@router.put("/general", response_model=SystemSettingsResponse)
async def update_general_settings(
    changes: SystemSettingsUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Update upload limits, public sharing and the document editor integration"""
    row = await system_settings_service.update(db, changes)

    changed = sorted(changes.model_dump(exclude_unset=True))
    await log_activity(db, current_user.id, "settings_updated", metadata={"fields": changed}, request=request)

    return _settings_response(row)
