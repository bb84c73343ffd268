# services/share-service/fileshare/models/database.py

from sqlalchemy import (
    Column, String, Integer, DateTime, Boolean,
    ForeignKey, JSON, BigInteger, Text, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from datetime import datetime
import enum
import uuid

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPERADMIN = "SUPERADMIN"


class Permission(str, enum.Enum):
    """Share permission levels, ordered VIEW < DOWNLOAD < EDIT"""
    VIEW = "VIEW"
    DOWNLOAD = "DOWNLOAD"
    EDIT = "EDIT"

    @property
    def rank(self) -> int:
        return PERMISSION_RANK[self]

    def satisfies(self, required: "Permission") -> bool:
        return self.rank >= Permission(required).rank


PERMISSION_RANK = {
    Permission.VIEW: 1,
    Permission.DOWNLOAD: 2,
    Permission.EDIT: 3,
}

ADMIN_ROLES = {Role.ADMIN.value, Role.SUPERADMIN.value}


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False)
    username = Column(String(100), unique=True, nullable=False)
    name = Column(String(255))
    avatar = Column(String(1000))
    password_hash = Column(String(255), nullable=True)  # SSO users have none
    role = Column(String(20), default=Role.USER.value, nullable=False)
    sso_provider = Column(String(50))
    sso_id = Column(String(255))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


class Folder(Base):
    __tablename__ = "folders"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    parent_id = Column(String(36), ForeignKey("folders.id"), nullable=True, index=True)
    is_public = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class File(Base):
    __tablename__ = "files"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    mime_type = Column(String(255), default="application/octet-stream")
    size = Column(BigInteger, nullable=False)
    storage_key = Column(String(1024), unique=True, nullable=False)
    folder_id = Column(String(36), ForeignKey("folders.id"), nullable=True, index=True)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    is_public = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Share(Base):
    __tablename__ = "shares"

    id = Column(String(36), primary_key=True, default=new_id)
    file_id = Column(String(36), ForeignKey("files.id"), nullable=True, index=True)
    folder_id = Column(String(36), ForeignKey("folders.id"), nullable=True, index=True)
    shared_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    shared_with_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    permission = Column(String(20), default=Permission.VIEW.value, nullable=False)
    public_token = Column(String(128), unique=True, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "(file_id IS NULL) <> (folder_id IS NULL)",
            name="share_exactly_one_resource",
        ),
        # NULL recipients (public shares) never collide
        UniqueConstraint("file_id", "shared_with_id", name="unique_file_recipient"),
        UniqueConstraint("folder_id", "shared_with_id", name="unique_folder_recipient"),
    )

    @property
    def is_public(self) -> bool:
        return self.shared_with_id is None

    def is_expired(self, now: datetime = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.utcnow()) > self.expires_at


class SystemSettings(Base):
    __tablename__ = "system_settings"

    id = Column(String(20), primary_key=True, default="system")
    max_file_size_mb = Column(Integer, nullable=False)
    max_storage_gb = Column(Integer, nullable=False)
    allow_public_sharing = Column(Boolean, nullable=False)
    allowed_file_types = Column(Text, nullable=False)
    blocked_file_types = Column(Text, nullable=False)
    onlyoffice_enabled = Column(Boolean, nullable=False)
    onlyoffice_url = Column(String(500))
    onlyoffice_secret = Column(String(500))
    onlyoffice_edit_enabled = Column(Boolean, nullable=False)
    onlyoffice_coedit = Column(Boolean, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"))
    action = Column(String(50), nullable=False)
    object_id = Column(String(36), nullable=True)
    ip_address = Column(String(45))
    user_agent = Column(Text)
    meta_data = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_activity_user_created", "user_id", "created_at"),
    )
