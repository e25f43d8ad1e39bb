"""
Persona routes.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from ..database import get_db
from ..models.profile import Profile
from ..schemas.persona import PersonaCreate, PersonaResponse, PersonaUpdate
from ..services.persona_service import PersonaService
from ..utils.security import get_current_user, get_current_user_optional, user_id_of


router = APIRouter(prefix="/api/personas", tags=["Personas"])


@router.get("", response_model=List[PersonaResponse])
async def search_personas(
    q: Optional[str] = None,
    category: Optional[str] = None,
    featured: Optional[bool] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    """Browse public personas."""
    return await PersonaService(db).search_personas(q, category, featured, limit, offset)


@router.get("/featured", response_model=List[PersonaResponse])
async def featured_personas(
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db)
):
    return await PersonaService(db).get_featured_personas(limit)


@router.get("/mine", response_model=List[PersonaResponse])
async def my_personas(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await PersonaService(db).get_user_personas(current_user.id)


@router.post("", response_model=PersonaResponse, status_code=status.HTTP_201_CREATED)
async def create_persona(
    data: PersonaCreate,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await PersonaService(db).create_persona(data, current_user.id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{id_or_slug}", response_model=PersonaResponse)
async def get_persona(
    id_or_slug: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Look a persona up by id or slug."""
    return await PersonaService(db).require_persona(id_or_slug, user_id_of(current_user))


@router.patch("/{persona_id}", response_model=PersonaResponse)
async def update_persona(
    persona_id: str,
    updates: PersonaUpdate,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await PersonaService(db).update_persona(persona_id, updates, current_user.id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.delete("/{persona_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_persona(
    persona_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await PersonaService(db).delete_persona(persona_id, current_user.id)


@router.post("/{persona_id}/fork", response_model=PersonaResponse, status_code=status.HTTP_201_CREATED)
async def fork_persona(
    persona_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Copy a shared persona into the caller's private collection."""
    return await PersonaService(db).fork_persona(persona_id, current_user.id)
