# app/domains/user/service.py
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions.chat import PersistenceFailureError
from models import User


class UserService:
    """Resolves the local user record for an authenticated Clerk identity."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_clerk_id(self, clerk_user_id: str) -> User | None:
        result = await self.db.execute(select(User).where(User.clerk_user_id == clerk_user_id))
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: UUID) -> User | None:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def create_user(self, clerk_user_id: str, email: str | None, username: str | None = None) -> User:
        """Create a new user from the identity claims."""
        user = User(
            clerk_user_id=clerk_user_id,
            email=email or f"{clerk_user_id}@users.clerk.local",
            username=username,
        )

        try:
            self.db.add(user)
            await self.db.commit()
            await self.db.refresh(user)
            return user
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceFailureError(f"Failed to create user: {str(e)}") from e

    async def get_or_create_user(self, clerk_user_id: str, clerk_payload: dict) -> User:
        """Get existing user or create one from the Clerk token payload."""
        user = await self.get_user_by_clerk_id(clerk_user_id)
        if not user:
            user = await self.create_user(
                clerk_user_id=clerk_user_id,
                email=clerk_payload.get("email"),
                username=clerk_payload.get("username"),
            )
        return user
