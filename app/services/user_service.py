"""User Service - identity lookups for authentication and notifications"""

from typing import Optional
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User


class UserService:
    """Service layer for user lookups"""

    @staticmethod
    async def get_user_by_id(db: AsyncSession, user_id: UUID) -> Optional[User]:
        """
        Get user by ID.

        Args:
            db: Database session
            user_id: User ID

        Returns:
            User or None if not found
        """
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_email(db: AsyncSession, user_id: UUID) -> Optional[str]:
        """Email address of a user, or None if the user is gone."""
        return await db.scalar(select(User.email).where(User.id == user_id))
