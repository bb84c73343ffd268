# services/share-service/fileshare/services/system_settings.py
"""Runtime system settings stored in the metadata store.

Environment values from ``config.settings`` only seed the row; once it
exists, admins change limits and feature toggles through the API.
"""
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models.database import SystemSettings
from ..models.schemas import SystemSettingsUpdate

SETTINGS_ID = "system"
WILDCARD = "*"


def normalize_extensions(value: Optional[str]) -> str:
    """``"PDF, .docx,,"`` -> ``".pdf,.docx"``; ``"*"`` stays a wildcard"""
    if value is None:
        return ""
    value = value.strip()
    if value == WILDCARD:
        return WILDCARD
    exts = []
    for item in value.split(","):
        item = item.strip().lower()
        if not item:
            continue
        if not item.startswith("."):
            item = "." + item
        if item not in exts:
            exts.append(item)
    return ",".join(exts)


def parse_extensions(value: Optional[str]) -> Optional[List[str]]:
    """Return the extension list, or None for the wildcard"""
    normalized = normalize_extensions(value)
    if normalized == WILDCARD:
        return None
    return [ext for ext in normalized.split(",") if ext]


def defaults() -> dict:
    return {
        "max_file_size_mb": settings.MAX_FILE_SIZE_MB,
        "max_storage_gb": settings.MAX_STORAGE_GB,
        "allow_public_sharing": settings.ALLOW_PUBLIC_SHARING,
        "allowed_file_types": normalize_extensions(settings.ALLOWED_FILE_TYPES) or WILDCARD,
        "blocked_file_types": normalize_extensions(settings.BLOCKED_FILE_TYPES),
        "onlyoffice_enabled": settings.ONLYOFFICE_ENABLED,
        "onlyoffice_url": settings.ONLYOFFICE_URL,
        "onlyoffice_secret": settings.ONLYOFFICE_SECRET,
        "onlyoffice_edit_enabled": settings.ONLYOFFICE_EDIT_ENABLED,
        "onlyoffice_coedit": settings.ONLYOFFICE_COEDIT,
    }


class SystemSettingsService:

    async def get(self, db: AsyncSession) -> SystemSettings:
        result = await db.execute(select(SystemSettings).filter(SystemSettings.id == SETTINGS_ID))
        row = result.scalar_one_or_none()
        if row is None:
            row = SystemSettings(id=SETTINGS_ID, **defaults())
            db.add(row)
            try:
                await db.commit()
            except IntegrityError:
                # Created by a concurrent request
                await db.rollback()
                result = await db.execute(
                    select(SystemSettings).filter(SystemSettings.id == SETTINGS_ID)
                )
                row = result.scalar_one()
        return row

    async def update(self, db: AsyncSession, changes: SystemSettingsUpdate) -> SystemSettings:
        row = await self.get(db)
        data = changes.model_dump(exclude_unset=True)
        for field in ("allowed_file_types", "blocked_file_types"):
            if field in data:
                data[field] = normalize_extensions(data[field])
        if data.get("allowed_file_types") == "":
            data["allowed_file_types"] = WILDCARD
        if "onlyoffice_url" in data and data["onlyoffice_url"]:
            data["onlyoffice_url"] = data["onlyoffice_url"].rstrip("/")
        for field, value in data.items():
            setattr(row, field, value)
        await db.commit()
        return row

    @staticmethod
    def editor_secret(row: SystemSettings) -> str:
        return row.onlyoffice_secret or settings.ONLYOFFICE_SECRET


system_settings_service = SystemSettingsService()
