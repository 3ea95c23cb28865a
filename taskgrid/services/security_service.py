from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import jwt, JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from taskgrid.models.user import User
from taskgrid.core import get_settings

settings = get_settings()


class SecurityService:
    """Identity tokens issued by the session provider.

    The API only decodes tokens; ``create_access_token`` exists for local
    tooling and tests.
    """

    @staticmethod
    async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
        query = select(User).where(User.id == user_id)
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
        """Get a user by email (case-insensitive)"""
        query = select(User).where(User.email == email.lower())
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    def create_access_token(
        data: Dict[str, Any],
        expires_delta: Optional[timedelta] = None
    ) -> str:
        to_encode = data.copy()

        if expires_delta:
            expire = datetime.utcnow() + expires_delta
        else:
            expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

        to_encode.update({"exp": expire, "type": "access"})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """Decode a JWT token; an invalid token decodes to an empty payload"""
        try:
            return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            return {}

    @staticmethod
    def verify_token(token: str, token_type: str = "access") -> Optional[Dict[str, Any]]:
        """Payload of a valid, unexpired token of the given type"""
        try:
            payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            return None

        if payload.get("type") != token_type:
            return None
        if payload.get("sub") is None:
            return None
        return payload

    @staticmethod
    async def get_current_user(db: AsyncSession, token: str) -> Optional[User]:
        """The active user a token belongs to"""
        payload = SecurityService.verify_token(token)
        if not payload:
            return None

        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError):
            return None

        user = await SecurityService.get_user_by_id(db, user_id)
        if user is None or not user.is_active:
            return None
        return user
