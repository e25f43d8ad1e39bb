"""
Security utilities for authentication.

Tokens are issued by the external auth provider; this module only verifies
them and maps the subject onto a local profile.
"""

from typing import Any, Dict, Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db
from ..logger import get_logger
from ..models.profile import Profile
from ..services.profile_service import ProfileService

logger = get_logger(__name__)

# HTTP Bearer for JWT; missing credentials are handled per dependency
security = HTTPBearer(auto_error=False)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT, returning its claims."""
    try:
        options = {"verify_aud": settings.JWT_AUDIENCE is not None}
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
    except JWTError as e:
        logger.debug("Rejected token: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials"
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )
    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Profile:
    """Get the profile of the authenticated caller."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = decode_token(credentials.credentials)
    return await ProfileService(db).get_or_create_profile(str(claims["sub"]), claims.get("email"))


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Optional[Profile]:
    """Get the current user if authenticated, otherwise None."""
    if credentials is None:
        return None

    try:
        return await get_current_user(credentials, db)
    except HTTPException:
        return None


def user_id_of(user: Optional[Profile]) -> Optional[str]:
    return user.id if user is not None else None
