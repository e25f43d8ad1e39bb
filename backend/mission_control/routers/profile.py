"""
User profile routes.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.profile import Profile
from ..schemas.profile import ProfileResponse, ProfileUpdate
from ..services.profile_service import ProfileService
from ..utils.security import get_current_user


router = APIRouter(prefix="/api/profile", tags=["Profile"])


@router.get("", response_model=ProfileResponse)
async def get_profile(current_user: Profile = Depends(get_current_user)):
    """Get the caller's profile."""
    return current_user


@router.put("", response_model=ProfileResponse)
async def update_profile(
    updates: ProfileUpdate,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update chat and voice defaults."""
    return await ProfileService(db).update_profile(current_user.id, updates)
