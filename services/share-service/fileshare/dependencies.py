# services/share-service/fileshare/dependencies.py
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from .database import AsyncSessionLocal
from .exceptions import Forbidden, Unauthorized
from .models.database import User
from .services.activity import activity_service
from .services.auth import auth_service
from .services.storage import StorageGateway, create_s3_client
from .config import settings

# Security (cookie sessions are accepted too, so a missing header is not fatal)
security = HTTPBearer(auto_error=False)

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session"""
    async with AsyncSessionLocal() as session:
        yield session

async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get the current authenticated user from the bearer token or session cookie"""
    token = credentials.credentials if credentials else request.cookies.get(settings.COOKIE_NAME)
    if not token:
        raise Unauthorized("Authentication required")

    user = await auth_service.get_user_from_token(token, db)
    if user is None:
        raise Unauthorized("Invalid token")

    if not user.is_active:
        raise Forbidden("Account deactivated")

    return user

async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise Forbidden("Admin access required")
    return current_user

def get_storage(request: Request) -> StorageGateway:
    """The process-wide storage gateway, built on first use"""
    gateway = getattr(request.app.state, "storage", None)
    if gateway is None:
        gateway = StorageGateway(create_s3_client(), settings.S3_BUCKET)
        request.app.state.storage = gateway
    return gateway

async def log_activity(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    object_id: str = None,
    metadata: dict = None,
    request: Request = None,
):
    """Log user activity"""
    return await activity_service.log_activity(
        db, user_id, action, object_id=object_id, metadata=metadata, request=request
    )
