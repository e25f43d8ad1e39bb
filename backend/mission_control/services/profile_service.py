"""
Profile service.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import StorageError
from ..logger import get_logger
from ..models.profile import Profile
from ..schemas.profile import ProfileUpdate

logger = get_logger(__name__)


class ProfileService:
    """Service for per-user profile rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        result = await self.db.execute(select(Profile).filter(Profile.id == user_id))
        return result.scalar_one_or_none()

    async def get_or_create_profile(self, user_id: str, email: Optional[str] = None) -> Profile:
        """Profile for an authenticated subject, created on first sight."""
        profile = await self.get_profile(user_id)
        if profile is not None:
            if email and profile.email != email:
                profile.email = email
                await self._commit("update profile")
            return profile

        profile = Profile(id=user_id, email=email)
        self.db.add(profile)
        await self._commit("create profile")
        await self.db.refresh(profile)
        logger.info("Created profile for %s", user_id)
        return profile

    async def update_profile(self, user_id: str, updates: ProfileUpdate) -> Profile:
        profile = await self.get_or_create_profile(user_id)

        for key, value in updates.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(profile, key, value)

        await self._commit("update profile")
        await self.db.refresh(profile)
        return profile

    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(action, e) from e
