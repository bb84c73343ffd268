# services/share-service/fileshare/services/folders.py
"""Folder tree management.

Folders live in a single table linked by ``parent_id``. Every walk over
that table is bounded, either by ``MAX_TREE_DEPTH`` (ancestor walks) or by
a visited set (descendant walks), so rows that somehow form a cycle can
never hang a request.
"""
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, delete, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import BadRequest, InternalError, NotFound
from ..models.database import File, Folder, Permission, Share, User
from ..monitoring.metrics import cascade_deleted
from .sharing import sharing_service
from .storage import StorageError, StorageGateway
from .tree import MAX_TREE_DEPTH, ancestors

logger = logging.getLogger(__name__)


class FolderService:
    """Create, list, move and cascade-delete folders"""

    async def get_folder(self, db: AsyncSession, folder_id: str) -> Optional[Folder]:
        result = await db.execute(select(Folder).filter(Folder.id == folder_id))
        return result.scalar_one_or_none()

    async def get_owned_folder(self, db: AsyncSession, folder_id: str, user: User) -> Folder:
        result = await db.execute(
            select(Folder).filter(Folder.id == folder_id, Folder.owner_id == user.id)
        )
        folder = result.scalar_one_or_none()
        if not folder:
            raise NotFound("Folder not found")
        return folder

    async def breadcrumbs(self, db: AsyncSession, folder_id: Optional[str]) -> List[Dict[str, str]]:
        return [{"id": f.id, "name": f.name} for f in await ancestors(db, folder_id)]

    async def folder_path(self, db: AsyncSession, folder_id: Optional[str]) -> str:
        """``/``-joined folder names from the root to ``folder_id``; walked fresh on every call"""
        return "/".join(f.name for f in await ancestors(db, folder_id))

    async def create_folder(self, db: AsyncSession, name: str, owner: User,
                            parent_id: Optional[str] = None) -> Folder:
        # Parents must already exist, which keeps the tree acyclic
        if parent_id:
            await self.get_owned_folder(db, parent_id, owner)
            if len(await ancestors(db, parent_id)) >= MAX_TREE_DEPTH:
                raise BadRequest("Maximum folder depth reached")

        folder = Folder(name=name, owner_id=owner.id, parent_id=parent_id)
        db.add(folder)
        await db.commit()
        return folder

    async def update_folder(self, db: AsyncSession, folder_id: str, user: User,
                            name: str, parent_id: Optional[str]) -> Folder:
        """Rename and/or move a folder. Object keys of contained files never change."""
        folder = await self.get_owned_folder(db, folder_id, user)

        if parent_id != folder.parent_id:
            if parent_id:
                await self.get_owned_folder(db, parent_id, user)
                chain = await ancestors(db, parent_id)
                if any(f.id == folder.id for f in chain):
                    raise BadRequest("Cannot move a folder into itself or one of its subfolders")
                height = max(depth for _, depth in await self.collect_descendants(db, folder.id))
                if len(chain) + height + 1 > MAX_TREE_DEPTH:
                    raise BadRequest("Maximum folder depth reached")
            folder.parent_id = parent_id

        folder.name = name
        await db.commit()
        return folder

    async def list_children(self, db: AsyncSession, user: User,
                            parent_id: Optional[str] = None) -> Tuple[List[Folder], List[File], List[Dict[str, str]]]:
        """Folders and files directly under ``parent_id`` plus the breadcrumb trail.

        Without a parent the caller's own root is listed. A folder shared
        with the caller can be browsed like one of its own.
        """
        owner_id = user.id
        crumbs: List[Dict[str, str]] = []
        if parent_id:
            grant = await sharing_service.resolve_access(db, "folder", parent_id, user, Permission.VIEW)
            owner_id = grant.owner_id
            crumbs = await self.breadcrumbs(db, parent_id)
            if grant.via == "share":
                # Recipients see the trail from the topmost folder shared with them
                shared_ids = {s.folder_id for s in grant.shares if s.folder_id}
                start = next((i for i, c in enumerate(crumbs) if c["id"] in shared_ids), 0)
                crumbs = crumbs[start:]

        folders = await db.execute(
            select(Folder)
            .filter(Folder.owner_id == owner_id, Folder.parent_id == parent_id)
            .order_by(Folder.name.asc())
        )
        files = await db.execute(
            select(File)
            .filter(File.owner_id == owner_id, File.folder_id == parent_id)
            .order_by(File.created_at.desc())
        )
        return list(folders.scalars().all()), list(files.scalars().all()), crumbs

    async def collect_descendants(self, db: AsyncSession, folder_id: str) -> List[Tuple[str, int]]:
        """Depth-first walk returning ``(folder_id, depth)`` for the folder and all its descendants"""
        found: List[Tuple[str, int]] = []
        seen = set()
        stack = [(folder_id, 0)]
        while stack:
            current, depth = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            found.append((current, depth))
            result = await db.execute(select(Folder.id).filter(Folder.parent_id == current))
            for child_id in result.scalars().all():
                if child_id not in seen:
                    stack.append((child_id, depth + 1))
        return found

    async def delete_folder(self, db: AsyncSession, storage: StorageGateway,
                            folder_id: str, user: User) -> Dict[str, int]:
        """Cascade-delete a folder with every nested folder, file and share.

        Object-store deletes run first and are best-effort: an orphaned blob
        is recoverable, metadata pointing at a missing blob is not. The
        metadata deletes that follow run in one transaction and any failure
        there rolls everything back.
        """
        query = select(Folder).filter(Folder.id == folder_id)
        if not user.is_admin:
            query = query.filter(Folder.owner_id == user.id)
        result = await db.execute(query)
        if result.scalar_one_or_none() is None:
            raise NotFound("Folder not found")

        tree = await self.collect_descendants(db, folder_id)
        folder_ids = [fid for fid, _ in tree]

        files_result = await db.execute(
            select(File.id, File.storage_key).filter(File.folder_id.in_(folder_ids))
        )
        files = files_result.all()
        file_ids = [f.id for f in files]

        orphaned = 0
        for file_id, storage_key in files:
            try:
                await storage.delete(storage_key)
            except StorageError:
                orphaned += 1
                logger.error("Could not delete object for file %s; continuing cascade", file_id)

        try:
            share_filter = [Share.folder_id.in_(folder_ids)]
            if file_ids:
                share_filter.append(Share.file_id.in_(file_ids))
            shares_result = await db.execute(delete(Share).where(or_(*share_filter)))
            if file_ids:
                await db.execute(delete(File).where(File.id.in_(file_ids)))

            # Deepest level first so no folder goes while it still has children
            levels: Dict[int, List[str]] = {}
            for fid, depth in tree:
                levels.setdefault(depth, []).append(fid)
            for depth in sorted(levels, reverse=True):
                await db.execute(delete(Folder).where(Folder.id.in_(levels[depth])))

            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.exception("Metadata cleanup failed while deleting folder %s", folder_id)
            raise InternalError("Failed to delete folder") from e

        cascade_deleted.labels(resource="folder").inc(len(folder_ids))
        cascade_deleted.labels(resource="file").inc(len(file_ids))
        return {
            "folders_deleted": len(folder_ids),
            "files_deleted": len(file_ids),
            "shares_deleted": shares_result.rowcount or 0,
            "orphaned_objects": orphaned,
        }


folder_service = FolderService()
