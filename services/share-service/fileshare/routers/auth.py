# services/share-service/fileshare/routers/auth.py
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from ..dependencies import get_db, get_current_user, log_activity
from ..services.auth import auth_service
from ..models.database import User
from ..models.schemas import (
    Token, UserCreate, UserLogin, UserResponse, SSOSyncRequest, SSOSyncResponse, user_response,
)
from ..config import settings

router = APIRouter(prefix="/api/v1/auth", tags=["authentication"])


def _set_session_cookie(response: Response, token: str):
    response.set_cookie(
        settings.COOKIE_NAME,
        token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )

@router.post("/register", response_model=Token)
async def register(
    user_data: UserCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Register a new user"""
    user = await auth_service.register(
        db, user_data.email, user_data.username, user_data.password, user_data.name
    )

    await log_activity(db, user.id, "user_registered", user.id, request=request)

    access_token = auth_service.token_for(user)
    _set_session_cookie(response, access_token)
    return Token(access_token=access_token, token_type="bearer", user=user_response(user))

@router.post("/login", response_model=Token)
async def login(
    credentials: UserLogin,
    response: Response,
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Login user"""
    user = await auth_service.authenticate(db, credentials.email, credentials.password)

    await log_activity(db, user.id, "user_login", request=request)

    access_token = auth_service.token_for(user)
    _set_session_cookie(response, access_token)
    return Token(access_token=access_token, token_type="bearer", user=user_response(user))

@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(settings.COOKIE_NAME)
    return {"success": True}

@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    """Get the authenticated user"""
    return user_response(current_user)

@router.post("/sso/sync-user", response_model=SSOSyncResponse)
async def sync_sso_user(
    payload: SSOSyncRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    request: Request = None,
):
    """Create or update the local account behind an identity-provider access token"""
    profile = await auth_service.fetch_sso_profile(payload.access_token)
    user = await auth_service.sync_sso_user(db, profile)

    await log_activity(
        db, user.id, "user_sso_sync", user.id,
        {"role": user.role, "sso_id": user.sso_id}, request
    )

    token = auth_service.token_for(user)
    _set_session_cookie(response, token)
    return SSOSyncResponse(user=user_response(user), synced_role=user.role, internal_token=token)
