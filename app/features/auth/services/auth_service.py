import logging
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.auth.models.user import User
from app.features.auth.schemas.auth import LoginRequest, SignupRequest, TokenResponse, UserResponse
from app.features.auth.utils.security import create_access_token, hash_password, verify_password
from app.platform.db.base import utcnow

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _token_response(self, user: User) -> TokenResponse:
        access_token = create_access_token(data={"sub": str(user.id), "email": user.email})
        return TokenResponse(
            access_token=access_token,
            token_type="bearer",
            user=UserResponse.model_validate(user),
        )

    async def register_user(self, request: SignupRequest) -> TokenResponse:
        existing = await self.db.execute(
            select(User).where(
                or_(User.email == request.email.lower(), User.username == request.username)
            )
        )
        if existing.scalars().first():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Email or username already exists"
            )

        new_user = User(
            email=request.email.lower(),
            username=request.username,
            password_hash=hash_password(request.password),
        )

        try:
            self.db.add(new_user)
            await self.db.commit()
            await self.db.refresh(new_user)
        except IntegrityError:
            await self.db.rollback()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Email or username already exists"
            )

        logger.info(f"Registered user {new_user.id}")
        return self._token_response(new_user)

    async def login_user(self, request: LoginRequest) -> TokenResponse:
        result = await self.db.execute(select(User).where(User.email == request.email.lower()))
        user = result.scalar_one_or_none()

        if not user or not user.is_active or not verify_password(request.password, user.password_hash):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password",
                headers={"WWW-Authenticate": "Bearer"},
            )

        user.last_login = utcnow()
        await self.db.commit()
        await self.db.refresh(user)

        return self._token_response(user)

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()
