# services/share-service/fileshare/services/files.py

import logging
import os
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import (
    BadRequest, InternalError, NotFound, PayloadTooLarge, QuotaExceeded, UnsupportedMediaType,
)
from ..models.database import File, Folder, Permission, Share, SystemSettings, User
from ..monitoring.metrics import uploads_total, uploaded_bytes, upload_duration
from .folders import folder_service
from .keys import generate_object_key
from .sharing import sharing_service
from .storage import StorageError, StorageGateway
from .system_settings import parse_extensions, system_settings_service

logger = logging.getLogger(__name__)

MB = 1024 * 1024
GB = 1024 * MB


@dataclass
class IncomingFile:
    """A fully received upload part"""
    filename: str
    content_type: Optional[str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename)[1].lower()


def validate_batch(system: SystemSettings, used_bytes: int, incoming: List[IncomingFile]):
    """Check every file before anything is written; the first violation rejects the batch"""
    max_file = system.max_file_size_mb * MB
    quota = system.max_storage_gb * GB
    blocked = parse_extensions(system.blocked_file_types) or []
    allowed = parse_extensions(system.allowed_file_types)

    pending = 0
    for item in incoming:
        if item.size > max_file:
            raise PayloadTooLarge(
                f'File "{item.filename}" exceeds the maximum size of {system.max_file_size_mb} MB'
            )
        if used_bytes + pending + item.size > quota:
            raise QuotaExceeded(
                f"Uploading this file would exceed your storage quota of {system.max_storage_gb} GB"
            )
        if item.extension and item.extension in blocked:
            raise UnsupportedMediaType(
                f'File type "{item.extension}" is not allowed for security reasons'
            )
        if allowed is not None and item.extension not in allowed:
            raise UnsupportedMediaType(
                f'File type "{item.extension or item.filename}" is not in the list of allowed types'
            )
        pending += item.size


class FileService:

    async def storage_used(self, db: AsyncSession, user_id: str) -> int:
        result = await db.execute(
            select(func.coalesce(func.sum(File.size), 0)).filter(File.owner_id == user_id)
        )
        return int(result.scalar() or 0)

    async def upload_files(self, db: AsyncSession, storage: StorageGateway, user: User,
                           incoming: List[IncomingFile], folder_id: Optional[str] = None) -> List[File]:
        """Store a batch of uploads; either every file is recorded or none is.

        Rows are only added after the object is durably written, and are
        committed together at the end.
        """
        if not incoming:
            raise BadRequest("No file uploaded")

        if folder_id:
            result = await db.execute(
                select(Folder).filter(Folder.id == folder_id, Folder.owner_id == user.id)
            )
            if result.scalar_one_or_none() is None:
                raise NotFound("Folder not found")

        system = await system_settings_service.get(db)
        used = await self.storage_used(db, user.id)
        try:
            validate_batch(system, used, incoming)
        except Exception:
            uploads_total.labels(status="rejected").inc()
            raise

        start = time.time()
        owner_id = user.id
        folder_path = await folder_service.folder_path(db, folder_id) if folder_id else ""

        written: List[str] = []
        records: List[File] = []
        try:
            for item in incoming:
                mime_type = item.content_type or "application/octet-stream"
                key = generate_object_key(owner_id, item.filename, folder_path)
                await storage.put(key, item.data, mime_type)
                written.append(key)

                record = File(
                    name=item.filename,
                    original_name=item.filename,
                    mime_type=mime_type,
                    size=item.size,
                    storage_key=key,
                    folder_id=folder_id,
                    owner_id=owner_id,
                )
                db.add(record)
                records.append(record)
            await db.commit()
        except (StorageError, SQLAlchemyError) as e:
            await db.rollback()
            await self._discard_objects(storage, written)
            uploads_total.labels(status="failed").inc()
            logger.error("Upload batch of %s file(s) failed: %s", len(incoming), e)
            raise InternalError("Failed to upload file") from e

        uploads_total.labels(status="stored").inc()
        uploaded_bytes.inc(sum(item.size for item in incoming))
        upload_duration.observe(time.time() - start)
        return records

    async def _discard_objects(self, storage: StorageGateway, keys: List[str]):
        for key in keys:
            try:
                await storage.delete(key)
            except StorageError:
                logger.error("Could not remove object left by a failed upload")

    async def get_file(self, db: AsyncSession, file_id: str, user: User) -> File:
        grant = await sharing_service.resolve_access(db, "file", file_id, user, Permission.VIEW)
        return grant.resource

    async def download_url(self, db: AsyncSession, storage: StorageGateway,
                           file_id: str, user: User) -> str:
        grant = await sharing_service.resolve_access(db, "file", file_id, user, Permission.DOWNLOAD)
        return await storage.presign(grant.resource.storage_key)

    async def delete_file(self, db: AsyncSession, storage: StorageGateway,
                          file_id: str, user: User) -> File:
        query = select(File).filter(File.id == file_id)
        if not user.is_admin:
            query = query.filter(File.owner_id == user.id)
        result = await db.execute(query)
        file_obj = result.scalar_one_or_none()
        if not file_obj:
            raise NotFound("File not found")

        try:
            await storage.delete(file_obj.storage_key)
        except StorageError as e:
            raise InternalError("Failed to delete file") from e

        try:
            await db.execute(delete(Share).where(Share.file_id == file_id))
            await db.delete(file_obj)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.exception("Metadata cleanup failed while deleting file %s", file_id)
            raise InternalError("Failed to delete file") from e
        return file_obj

    async def storage_stats(self, db: AsyncSession, user: User) -> Dict:
        system = await system_settings_service.get(db)
        result = await db.execute(
            select(
                func.coalesce(func.sum(File.size), 0).label("used"),
                func.count(File.id).label("files"),
            ).filter(File.owner_id == user.id)
        )
        stats = result.first()
        used = int(stats.used or 0)
        quota = system.max_storage_gb * GB
        return {
            "quota": quota,
            "used": used,
            "available": max(quota - used, 0),
            "percentage_used": round(used / quota * 100, 2) if quota else 0.0,
            "total_files": int(stats.files or 0),
        }


file_service = FileService()
