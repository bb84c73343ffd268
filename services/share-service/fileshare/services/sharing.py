# services/share-service/fileshare/services/sharing.py
"""Sharing and permission checks.

Access to a file or folder is resolved in a fixed order: owner, then
admin, then the best active share held by the requester on the resource
or on one of its ancestor folders. A requester with no visibility at all
gets NotFound so the existence of other users' resources never leaks.
"""
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Union

from sqlalchemy import select, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..exceptions import BadRequest, Conflict, FeatureDisabled, Forbidden, Gone, NotFound
from ..models.database import File, Folder, Permission, Share, User
from ..monitoring.metrics import public_link_resolutions
from .storage import StorageGateway
from .system_settings import system_settings_service
from .tree import ancestors

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ("file", "folder")
PUBLIC_TOKEN_BYTES = 32  # 256 bits

Resource = Union[File, Folder]


@dataclass
class AccessGrant:
    resource_type: str
    resource: Resource
    owner_id: str
    permission: Permission
    via: str  # "owner", "admin" or "share"
    shares: List[Share] = field(default_factory=list)

    def allows(self, required: Permission) -> bool:
        return self.permission.satisfies(required)


def _model_for(resource_type: str):
    if resource_type not in RESOURCE_TYPES:
        raise BadRequest(f"Unknown resource type '{resource_type}'")
    return File if resource_type == "file" else Folder


def _share_column(resource_type: str):
    return Share.file_id if resource_type == "file" else Share.folder_id


def generate_public_token() -> str:
    return secrets.token_hex(PUBLIC_TOKEN_BYTES)


def public_url(token: str) -> str:
    return f"{settings.PUBLIC_URL.rstrip('/')}/public/{token}"


class SharingService:

    async def get_resource(self, db: AsyncSession, resource_type: str, resource_id: str) -> Optional[Resource]:
        model = _model_for(resource_type)
        result = await db.execute(select(model).filter(model.id == resource_id))
        return result.scalar_one_or_none()

    async def get_owned_resource(self, db: AsyncSession, resource_type: str,
                                 resource_id: str, user: User) -> Resource:
        resource = await self.get_resource(db, resource_type, resource_id)
        if resource is None or resource.owner_id != user.id:
            raise NotFound(f"{resource_type.capitalize()} not found")
        return resource

    async def _inherited_shares(self, db: AsyncSession, resource_type: str,
                                resource: Resource, user: User) -> List[Share]:
        """Active shares held by ``user`` on the resource or any ancestor folder"""
        parent_id = resource.folder_id if resource_type == "file" else resource.parent_id
        folder_ids = [f.id for f in await ancestors(db, parent_id)]
        if resource_type == "folder":
            folder_ids.append(resource.id)

        conditions = []
        if resource_type == "file":
            conditions.append(Share.file_id == resource.id)
        if folder_ids:
            conditions.append(Share.folder_id.in_(folder_ids))

        result = await db.execute(
            select(Share).filter(Share.shared_with_id == user.id, or_(*conditions))
        )
        now = datetime.utcnow()
        return [s for s in result.scalars().all() if not s.is_expired(now)]

    async def resolve_access(self, db: AsyncSession, resource_type: str, resource_id: str,
                             user: User, required: Permission = Permission.VIEW) -> AccessGrant:
        resource = await self.get_resource(db, resource_type, resource_id)
        label = resource_type.capitalize()
        if resource is None:
            raise NotFound(f"{label} not found")

        if resource.owner_id == user.id:
            return AccessGrant(resource_type, resource, resource.owner_id, Permission.EDIT, "owner")
        if user.is_admin:
            return AccessGrant(resource_type, resource, resource.owner_id, Permission.EDIT, "admin")

        shares = await self._inherited_shares(db, resource_type, resource, user)
        if not shares:
            raise NotFound(f"{label} not found")

        best = max((Permission(s.permission) for s in shares), key=lambda p: p.rank)
        grant = AccessGrant(resource_type, resource, resource.owner_id, best, "share", shares)
        if not grant.allows(required):
            # The requester can already see the resource, so no existence leak here
            raise Forbidden(f"{Permission(required).value} permission required")
        return grant

    async def list_shares(self, db: AsyncSession, resource_type: str, resource_id: str,
                          user: User) -> List[Dict]:
        await self.get_owned_resource(db, resource_type, resource_id, user)
        result = await db.execute(
            select(Share, User)
            .outerjoin(User, User.id == Share.shared_with_id)
            .filter(_share_column(resource_type) == resource_id)
            .order_by(Share.created_at.desc())
        )
        return [{"share": share, "shared_with": recipient} for share, recipient in result.all()]

    async def create_share(self, db: AsyncSession, resource_type: str, resource_id: str,
                           granter: User, recipient_email: str, permission: Permission,
                           expires_hours: Optional[int] = None) -> Share:
        """Share with one user. (resource, recipient) is a set key: re-sharing updates in place."""
        await self.get_owned_resource(db, resource_type, resource_id, granter)

        result = await db.execute(select(User).filter(User.email == recipient_email))
        recipient = result.scalar_one_or_none()
        if recipient is None:
            raise NotFound("User not found")
        if recipient.id == granter.id:
            raise BadRequest("Cannot share with yourself")

        expires_at = datetime.utcnow() + timedelta(hours=expires_hours) if expires_hours else None
        column = _share_column(resource_type)

        existing = await db.execute(
            select(Share).filter(column == resource_id, Share.shared_with_id == recipient.id)
        )
        share = existing.scalar_one_or_none()
        if share is None:
            share = Share(
                shared_by_id=granter.id,
                shared_with_id=recipient.id,
                permission=Permission(permission).value,
                expires_at=expires_at,
            )
            setattr(share, column.key, resource_id)
            db.add(share)
        else:
            share.permission = Permission(permission).value
            share.expires_at = expires_at
        try:
            await db.commit()
        except IntegrityError as e:
            # Lost a race with a concurrent share of the same pair
            await db.rollback()
            raise Conflict("This resource was shared with that user concurrently, please retry") from e
        return share

    async def create_public_link(self, db: AsyncSession, resource_type: str, resource_id: str,
                                 granter: User, permission: Permission = Permission.DOWNLOAD,
                                 expires_hours: Optional[int] = None) -> Share:
        """Issue (or re-issue) the granter's public link for a resource.

        There is at most one public share per (resource, granter); calling
        this again rotates that row's token.
        """
        system = await system_settings_service.get(db)
        if not system.allow_public_sharing:
            raise FeatureDisabled("Public sharing is disabled by administrator")

        grant = await self.resolve_access(db, resource_type, resource_id, granter, Permission.VIEW)
        if grant.owner_id != granter.id:
            raise Forbidden(f"You can only generate public links for your own {resource_type}s")
        resource = grant.resource

        column = _share_column(resource_type)
        result = await db.execute(
            select(Share).filter(
                column == resource_id,
                Share.shared_by_id == granter.id,
                Share.shared_with_id.is_(None),
            )
        )
        share = result.scalars().first()
        expires_at = datetime.utcnow() + timedelta(hours=expires_hours) if expires_hours else None

        if share is None:
            share = Share(shared_by_id=granter.id, shared_with_id=None)
            setattr(share, column.key, resource_id)
            db.add(share)
        share.public_token = generate_public_token()
        share.permission = Permission(permission).value
        share.expires_at = expires_at

        resource.is_public = True
        await db.commit()
        return share

    async def revoke_public_links(self, db: AsyncSession, resource_type: str, resource_id: str,
                                  user: User) -> int:
        await self.get_owned_resource(db, resource_type, resource_id, user)
        result = await db.execute(
            delete(Share).where(
                _share_column(resource_type) == resource_id,
                Share.shared_by_id == user.id,
                Share.shared_with_id.is_(None),
            )
        )
        await self.refresh_public_flag(db, resource_type, resource_id)
        await db.commit()
        return result.rowcount or 0

    async def refresh_public_flag(self, db: AsyncSession, resource_type: str, resource_id: str):
        """Keep ``is_public`` equal to "an unexpired public share exists for this resource" (no commit)"""
        resource = await self.get_resource(db, resource_type, resource_id)
        if resource is None:
            return
        now = datetime.utcnow()
        result = await db.execute(
            select(Share.id).filter(
                _share_column(resource_type) == resource_id,
                Share.shared_with_id.is_(None),
                or_(Share.expires_at.is_(None), Share.expires_at > now),
            ).limit(1)
        )
        resource.is_public = result.scalar_one_or_none() is not None

    async def revoke_share(self, db: AsyncSession, share_id: str, user: User) -> Share:
        """Either side of a share may end it"""
        result = await db.execute(select(Share).filter(Share.id == share_id))
        share = result.scalar_one_or_none()
        if share is None:
            raise NotFound("Share not found")
        if user.id not in (share.shared_by_id, share.shared_with_id):
            raise Forbidden("You cannot remove this share")

        await db.delete(share)
        await db.flush()
        if share.is_public:
            if share.file_id:
                await self.refresh_public_flag(db, "file", share.file_id)
            else:
                await self.refresh_public_flag(db, "folder", share.folder_id)
        await db.commit()
        return share

    async def shared_with_me(self, db: AsyncSession, user: User) -> Dict[str, List[Dict]]:
        result = await db.execute(
            select(Share, User)
            .join(User, User.id == Share.shared_by_id)
            .filter(Share.shared_with_id == user.id)
            .order_by(Share.created_at.desc())
        )
        now = datetime.utcnow()
        rows = [(s, by) for s, by in result.all() if not s.is_expired(now)]

        file_ids = [s.file_id for s, _ in rows if s.file_id]
        folder_ids = [s.folder_id for s, _ in rows if s.folder_id]
        files = {}
        folders = {}
        if file_ids:
            found = await db.execute(select(File).filter(File.id.in_(file_ids)))
            files = {f.id: f for f in found.scalars().all()}
        if folder_ids:
            found = await db.execute(select(Folder).filter(Folder.id.in_(folder_ids)))
            folders = {f.id: f for f in found.scalars().all()}

        shared = {"files": [], "folders": []}
        for share, shared_by in rows:
            if share.file_id in files:
                shared["files"].append({"resource": files[share.file_id], "share": share, "shared_by": shared_by})
            elif share.folder_id in folders:
                shared["folders"].append({"resource": folders[share.folder_id], "share": share, "shared_by": shared_by})
        return shared

    async def resolve_public_link(self, db: AsyncSession, storage: StorageGateway, token: str) -> Dict:
        """Unauthenticated lookup of a public share by token"""
        result = await db.execute(
            select(Share).filter(Share.public_token == token, Share.shared_with_id.is_(None))
        )
        share = result.scalar_one_or_none()
        if share is None:
            public_link_resolutions.labels(outcome="not_found").inc()
            raise NotFound("Invalid or expired link")
        if share.is_expired():
            public_link_resolutions.labels(outcome="expired").inc()
            resource_type = "file" if share.file_id else "folder"
            await self.refresh_public_flag(db, resource_type, share.file_id or share.folder_id)
            await db.commit()
            raise Gone("This link has expired")

        permission = Permission(share.permission)
        resource_type = "file" if share.file_id else "folder"
        resource = await self.get_resource(db, resource_type, share.file_id or share.folder_id)
        if resource is None:
            public_link_resolutions.labels(outcome="not_found").inc()
            raise NotFound("Invalid or expired link")

        owner_result = await db.execute(select(User).filter(User.id == resource.owner_id))
        owner = owner_result.scalar_one()

        resolved = {
            "type": resource_type,
            "resource": resource,
            "owner": owner,
            "permission": permission,
            "download_url": None,
        }
        if resource_type == "file":
            if permission.satisfies(Permission.DOWNLOAD):
                resolved["download_url"] = await storage.presign(resource.storage_key)
        else:
            files = await db.execute(
                select(File).filter(File.folder_id == resource.id).order_by(File.name.asc())
            )
            resolved["files"] = list(files.scalars().all())

        public_link_resolutions.labels(outcome="ok").inc()
        return resolved


sharing_service = SharingService()
