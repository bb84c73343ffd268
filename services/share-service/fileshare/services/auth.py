# services/share-service/fileshare/services/auth.py
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional
import aiohttp
from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from ..config import settings
from ..exceptions import Conflict, FeatureDisabled, Unauthorized, Forbidden, UpstreamError
from ..models.database import User, Role
from ..models.schemas import SSOUserInfo

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def map_sso_role(role: Optional[str] = None, role_name: Optional[str] = None) -> Role:
    """Map the identity provider's role claim onto an internal role.

    ``role`` is matched exactly, ``role_name`` by substring; anything
    unrecognised becomes a plain user.
    """
    if role:
        value = role.lower()
        if value in ("superadmin", "super_admin"):
            return Role.SUPERADMIN
        if value in ("admin", "administrator"):
            return Role.ADMIN
    elif role_name:
        value = role_name.lower()
        if "superadmin" in value or "super" in value:
            return Role.SUPERADMIN
        if "admin" in value:
            return Role.ADMIN
    return Role.USER


class AuthService:
    """Handles authentication and authorization"""

    async def get_user_from_token(self, token: str, db: AsyncSession) -> Optional[User]:
        """Verify an access token and return its user, or None"""
        try:
            payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            return None
        # Scoped tokens (e.g. editor downloads) are not access tokens
        if payload.get("purpose"):
            return None
        user_id = payload.get("sub")
        if not user_id:
            return None
        result = await db.execute(select(User).filter(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def get_password_hash(password: str) -> str:
        return pwd_context.hash(password)

    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
        to_encode = data.copy()
        if expires_delta:
            expire = datetime.utcnow() + expires_delta
        else:
            expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

        to_encode.update({"exp": expire})
        encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
        return encoded_jwt

    def token_for(self, user: User) -> str:
        return self.create_access_token({"sub": user.id, "email": user.email, "role": user.role})

    async def register(self, db: AsyncSession, email: str, username: str, password: str,
                       name: Optional[str] = None) -> User:
        result = await db.execute(
            select(User).filter((User.email == email) | (User.username == username))
        )
        if result.scalar_one_or_none():
            raise Conflict("User already exists")

        user = User(
            email=email,
            username=username,
            name=name,
            password_hash=self.get_password_hash(password),
            role=Role.USER.value,
        )
        db.add(user)
        await db.commit()
        return user

    async def authenticate(self, db: AsyncSession, email: str, password: str) -> User:
        result = await db.execute(select(User).filter(User.email == email))
        user = result.scalar_one_or_none()

        if not user or not user.password_hash or not self.verify_password(password, user.password_hash):
            raise Unauthorized("Invalid credentials")
        if not user.is_active:
            raise Forbidden("Account deactivated")
        return user

    async def fetch_sso_profile(self, access_token: str) -> SSOUserInfo:
        """Profile from the identity provider's userinfo endpoint for ``access_token``"""
        if not settings.SSO_USERINFO_URL:
            raise FeatureDisabled("Single sign-on is not configured")

        timeout = aiohttp.ClientTimeout(total=settings.SSO_TIMEOUT)
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(settings.SSO_USERINFO_URL, headers=headers) as response:
                    if response.status in (401, 403):
                        raise Unauthorized("Identity provider rejected the access token")
                    if response.status != 200:
                        logger.error("Userinfo request failed with status %s", response.status)
                        raise UpstreamError("Identity provider unavailable")
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            logger.error("Userinfo request timed out")
            raise UpstreamError("Identity provider unavailable")
        except aiohttp.ClientError as e:
            logger.error("Userinfo request failed: %s", e)
            raise UpstreamError("Identity provider unavailable")
        except ValueError:
            raise UpstreamError("Identity provider returned an unreadable profile")

        try:
            return SSOUserInfo.model_validate(data)
        except ValueError:
            raise UpstreamError("Identity provider returned an incomplete profile")

    async def sync_sso_user(self, db: AsyncSession, info: SSOUserInfo) -> User:
        """Create or update the local user for a verified identity-provider profile"""
        role = map_sso_role(info.role, info.role_name)
        username = info.preferred_username or info.email.split("@")[0]
        avatar = info.avatar_url or info.picture

        result = await db.execute(select(User).filter(User.email == info.email))
        user = result.scalar_one_or_none()
        if user is None:
            user = User(
                email=info.email,
                username=username,
                sso_id=info.sub,
                password_hash=None,
            )
            db.add(user)

        user.username = username
        user.name = info.name
        user.avatar = avatar
        user.role = role.value
        user.sso_provider = "oidc"
        if not user.sso_id:
            user.sso_id = info.sub
        await db.commit()
        return user


auth_service = AuthService()
