# services/share-service/fileshare/models/schemas.py

from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from .database import Permission

# User Schemas
class UserCreate(BaseModel):
    email: EmailStr
    username: str = Field(min_length=3, max_length=100)
    password: str = Field(min_length=8)
    name: Optional[str] = None

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class UserResponse(BaseModel):
    id: str
    email: str
    username: str
    name: Optional[str] = None
    avatar: Optional[str] = None
    role: str
    sso_provider: Optional[str] = None
    created_at: Optional[datetime] = None

class UserSummary(BaseModel):
    id: str
    name: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None

class SSOUserInfo(BaseModel):
    """Profile returned by the identity provider's userinfo endpoint"""
    sub: str
    email: EmailStr
    preferred_username: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Optional[str] = None
    role_name: Optional[str] = None

class SSOSyncRequest(BaseModel):
    """Access token issued by the identity provider after the code + PKCE exchange"""
    access_token: str = Field(min_length=1)

# Token Schemas
class Token(BaseModel):
    access_token: str
    token_type: str
    user: UserResponse

class SSOSyncResponse(BaseModel):
    user: UserResponse
    synced_role: str
    internal_token: str

# Folder Schemas
class FolderCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    parent_id: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_is_single_segment(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Folder name is required")
        if "/" in v or "\\" in v:
            raise ValueError("Folder name cannot contain path separators")
        return v

class FolderUpdate(FolderCreate):
    pass

class FolderResponse(BaseModel):
    id: str
    name: str
    parent_id: Optional[str]
    owner_id: str
    is_public: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

class Breadcrumb(BaseModel):
    id: str
    name: str

# File Schemas
class FileResponse(BaseModel):
    id: str
    name: str
    original_name: str
    mime_type: Optional[str]
    size: int
    folder_id: Optional[str]
    owner_id: str
    is_public: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

class DirectoryListing(BaseModel):
    folders: List[FolderResponse]
    files: List[FileResponse]
    breadcrumbs: List[Breadcrumb]

class UploadResponse(BaseModel):
    success: bool
    files: List[FileResponse]

class SharedFileResponse(FileResponse):
    permission: str
    share_id: str
    shared_by: UserSummary

class SharedFolderResponse(FolderResponse):
    permission: str
    share_id: str
    shared_by: UserSummary

class SharedWithMeResponse(BaseModel):
    files: List[SharedFileResponse]
    folders: List[SharedFolderResponse]
    breadcrumbs: List[Breadcrumb] = []

# Share Schemas
class ShareCreate(BaseModel):
    email: EmailStr
    permission: Permission = Permission.VIEW
    expires_hours: Optional[int] = Field(default=None, gt=0)

class PublicLinkCreate(BaseModel):
    permission: Permission = Permission.DOWNLOAD
    expires_hours: Optional[int] = Field(default=None, gt=0)

class ShareResponse(BaseModel):
    id: str
    file_id: Optional[str]
    folder_id: Optional[str]
    permission: str
    shared_by_id: str
    shared_with: Optional[UserSummary] = None
    public: bool
    expires_at: Optional[datetime] = None
    created_at: datetime

class PublicLinkResponse(BaseModel):
    success: bool
    public_token: str
    public_url: str
    permission: str
    expires_at: Optional[datetime] = None
    message: str

class PublicFileInfo(BaseModel):
    id: str
    name: str
    original_name: str
    mime_type: Optional[str]
    size: int
    created_at: datetime

class PublicFolderInfo(BaseModel):
    id: str
    name: str
    file_count: int
    created_at: datetime

class PublicResourceResponse(BaseModel):
    type: str
    file: Optional[PublicFileInfo] = None
    folder: Optional[PublicFolderInfo] = None
    files: Optional[List[PublicFileInfo]] = None
    owner: UserSummary
    permission: str
    download_url: Optional[str] = None

# Settings Schemas
class SystemSettingsResponse(BaseModel):
    max_file_size_mb: int
    max_storage_gb: int
    allow_public_sharing: bool
    allowed_file_types: str
    blocked_file_types: str
    onlyoffice_enabled: bool
    onlyoffice_url: Optional[str]
    onlyoffice_edit_enabled: bool
    onlyoffice_coedit: bool
    onlyoffice_secret_set: bool

class SystemSettingsUpdate(BaseModel):
    max_file_size_mb: Optional[int] = Field(default=None, ge=1, le=10240)
    max_storage_gb: Optional[int] = Field(default=None, ge=1, le=10000)
    allow_public_sharing: Optional[bool] = None
    allowed_file_types: Optional[str] = None
    blocked_file_types: Optional[str] = None
    onlyoffice_enabled: Optional[bool] = None
    onlyoffice_url: Optional[str] = None
    onlyoffice_secret: Optional[str] = None
    onlyoffice_edit_enabled: Optional[bool] = None
    onlyoffice_coedit: Optional[bool] = None

# Storage Schemas
class StorageStats(BaseModel):
    quota: int
    used: int
    available: int
    percentage_used: float
    total_files: int

# Editor Schemas
class EditorConfigResponse(BaseModel):
    config: Dict[str, Any]
    onlyoffice_url: str
    document_server_url: str

class EditorCallback(BaseModel):
    """Body posted by the document server to the callback URL"""
    status: Optional[int] = None
    url: Optional[str] = None
    key: Optional[str] = None
    users: Optional[List[str]] = None
    token: Optional[str] = None

    model_config = {"extra": "allow"}


# Response builders
def user_summary(user) -> Optional[UserSummary]:
    if user is None:
        return None
    return UserSummary(id=user.id, name=user.name, username=user.username, email=user.email)

def user_response(user) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        username=user.username,
        name=user.name,
        avatar=user.avatar,
        role=user.role,
        sso_provider=user.sso_provider,
        created_at=user.created_at,
    )

def folder_response(folder) -> FolderResponse:
    return FolderResponse(
        id=folder.id,
        name=folder.name,
        parent_id=folder.parent_id,
        owner_id=folder.owner_id,
        is_public=bool(folder.is_public),
        created_at=folder.created_at,
        updated_at=folder.updated_at,
    )

def file_response(f) -> FileResponse:
    return FileResponse(
        id=f.id,
        name=f.name,
        original_name=f.original_name,
        mime_type=f.mime_type,
        size=f.size,
        folder_id=f.folder_id,
        owner_id=f.owner_id,
        is_public=bool(f.is_public),
        created_at=f.created_at,
        updated_at=f.updated_at,
    )

def share_response(share, shared_with=None) -> ShareResponse:
    return ShareResponse(
        id=share.id,
        file_id=share.file_id,
        folder_id=share.folder_id,
        permission=share.permission,
        shared_by_id=share.shared_by_id,
        shared_with=user_summary(shared_with),
        public=share.is_public,
        expires_at=share.expires_at,
        created_at=share.created_at,
    )

def public_file_info(f) -> PublicFileInfo:
    return PublicFileInfo(
        id=f.id,
        name=f.name,
        original_name=f.original_name,
        mime_type=f.mime_type,
        size=f.size,
        created_at=f.created_at,
    )
