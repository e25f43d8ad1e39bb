"""
Persona management: CRUD, discovery, forking and prompt rendering.
"""

import re
from typing import Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import NotFoundError, PermissionDeniedError, StorageError
from ..logger import get_logger
from ..models.persona import Persona
from ..schemas.persona import Capabilities, ModelSettings, PersonaCreate, PersonaUpdate, Personality
from .conversation_service import utcnow

logger = get_logger(__name__)

SLUG_MAX_LENGTH = 50

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH].rstrip("-")


def render_system_prompt(persona: Persona, variables: Optional[Dict[str, str]] = None) -> str:
    """
    System prompt for a chat with ``persona``.

    ``{{name}}`` placeholders are filled from ``variables``; unknown ones are
    left as written. The persona's tone and verbosity are appended.
    """
    variables = variables or {}

    def replace(match: re.Match) -> str:
        key = match.group(1)
        return str(variables[key]) if key in variables else match.group(0)

    prompt = _PLACEHOLDER.sub(replace, persona.system_prompt or "")
    personality = Personality(**(persona.personality or {}))
    return f"{prompt}\n\nPersonality: Tone is {personality.tone}, verbosity is {personality.verbosity}."


def persona_model_settings(persona: Persona) -> ModelSettings:
    return ModelSettings(**(persona.model_settings or {}))


class PersonaService:
    """Service for persona records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _slug_exists(self, slug: str) -> bool:
        result = await self.db.execute(select(Persona.id).filter(Persona.slug == slug))
        return result.first() is not None

    async def _available_slug(self, base: str) -> str:
        slug = base
        suffix = 1
        while await self._slug_exists(slug):
            suffix += 1
            tail = f"-{suffix}"
            slug = base[:SLUG_MAX_LENGTH - len(tail)].rstrip("-") + tail
        return slug

    async def _save(self, persona: Persona, action: str) -> Persona:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(action, e) from e
        await self.db.refresh(persona)
        return persona

    async def create_persona(self, data: PersonaCreate, creator_id: str) -> Persona:
        slug = slugify(data.name)
        if not slug:
            raise ValueError("Persona name must contain letters or digits")
        if await self._slug_exists(slug):
            raise ValueError(f'Persona with slug "{slug}" already exists')

        personality = Personality(**(data.personality or {}))
        model_settings = ModelSettings(**(data.model_settings or {}))
        if model_settings.temperature is None:
            model_settings.temperature = personality.creativity

        persona = Persona(
            creator_id=creator_id,
            name=data.name,
            slug=slug,
            avatar_url=data.avatar_url,
            description=data.description,
            category=data.category or "general",
            system_prompt=data.system_prompt,
            starter_prompts=list(data.starter_prompts),
            personality=personality.model_dump(),
            capabilities=Capabilities(**(data.capabilities or {})).model_dump(),
            model_settings=model_settings.model_dump(),
            voice_config=data.voice_config.model_dump() if data.voice_config else None,
            visibility=data.visibility,
        )
        self.db.add(persona)
        try:
            persona = await self._save(persona, "create persona")
        except StorageError as e:
            if isinstance(e.cause, IntegrityError):
                raise ValueError(f'Persona with slug "{slug}" already exists') from e
            raise

        logger.info("Created persona %s (%s)", persona.slug, persona.id)
        return persona

    async def get_persona(self, id_or_slug: str) -> Optional[Persona]:
        result = await self.db.execute(
            select(Persona).filter(or_(Persona.id == id_or_slug, Persona.slug == id_or_slug))
        )
        return result.scalars().first()

    async def require_persona(self, id_or_slug: str, user_id: Optional[str] = None) -> Persona:
        """Private personas are only visible to their creator."""
        persona = await self.get_persona(id_or_slug)
        if persona is None or (persona.visibility == "private" and persona.creator_id != user_id):
            raise NotFoundError("Persona not found")
        return persona

    async def _require_owned(self, persona_id: str, user_id: str, verb: str) -> Persona:
        persona = await self.get_persona(persona_id)
        if persona is None:
            raise NotFoundError("Persona not found")
        if persona.creator_id != user_id:
            raise PermissionDeniedError(f"Unauthorized: You can only {verb} your own personas")
        return persona

    async def update_persona(self, persona_id: str, updates: PersonaUpdate, user_id: str) -> Persona:
        persona = await self._require_owned(persona_id, user_id, "update")

        changes = updates.model_dump(exclude_unset=True)
        if not changes:
            raise ValueError("No fields to update")

        if "name" in changes and changes["name"] != persona.name:
            slug = slugify(changes["name"])
            if not slug:
                raise ValueError("Persona name must contain letters or digits")
            if slug != persona.slug and await self._slug_exists(slug):
                raise ValueError(f'Persona with slug "{slug}" already exists')
            persona.slug = slug

        # nested settings merge into what is stored
        if changes.get("personality") is not None:
            changes["personality"] = Personality(**{**(persona.personality or {}), **changes["personality"]}).model_dump()
        if changes.get("capabilities") is not None:
            changes["capabilities"] = Capabilities(**{**(persona.capabilities or {}), **changes["capabilities"]}).model_dump()
        if changes.get("model_settings") is not None:
            changes["model_settings"] = ModelSettings(**{**(persona.model_settings or {}), **changes["model_settings"]}).model_dump()

        for field, value in changes.items():
            setattr(persona, field, value)

        persona.version = (persona.version or 1) + 1
        persona.updated_at = utcnow()
        return await self._save(persona, "update persona")

    async def delete_persona(self, persona_id: str, user_id: str) -> None:
        persona = await self._require_owned(persona_id, user_id, "delete")
        await self.db.delete(persona)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("delete persona", e) from e
        logger.info("Deleted persona %s", persona_id)

    async def get_user_personas(self, user_id: str) -> List[Persona]:
        result = await self.db.execute(
            select(Persona).filter(Persona.creator_id == user_id).order_by(Persona.created_at.desc())
        )
        return list(result.scalars().all())

    async def search_personas(
        self,
        query: Optional[str] = None,
        category: Optional[str] = None,
        featured: Optional[bool] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Persona]:
        """Public personas matching the filters, newest first."""
        stmt = select(Persona).filter(Persona.visibility == "public")
        if query:
            pattern = f"%{query}%"
            stmt = stmt.filter(or_(Persona.name.ilike(pattern), Persona.description.ilike(pattern)))
        if category:
            stmt = stmt.filter(Persona.category == category)
        if featured is not None:
            stmt = stmt.filter(Persona.is_featured == featured)

        result = await self.db.execute(
            stmt.order_by(Persona.created_at.desc(), Persona.name).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    async def get_featured_personas(self, limit: int = 10) -> List[Persona]:
        return await self.search_personas(featured=True, limit=limit)

    async def fork_persona(self, persona_id: str, user_id: str) -> Persona:
        """Copy a public or unlisted persona into the caller's private collection."""
        original = await self.get_persona(persona_id)
        if original is None:
            raise NotFoundError("Persona not found")
        if original.visibility == "private":
            raise PermissionDeniedError("Cannot fork a private persona")

        name = f"{original.name} (Fork)"
        fork = Persona(
            creator_id=user_id,
            name=name[:100],
            slug=await self._available_slug(slugify(name)),
            avatar_url=original.avatar_url,
            description=f"Forked from {original.name}. {original.description or ''}".strip(),
            category=original.category,
            system_prompt=original.system_prompt,
            starter_prompts=list(original.starter_prompts or []),
            personality=dict(original.personality or {}),
            capabilities=dict(original.capabilities or {}),
            model_settings=dict(original.model_settings or {}),
            voice_config=dict(original.voice_config) if original.voice_config else None,
            visibility="private",
            forked_from=original.id,
        )
        self.db.add(fork)
        fork = await self._save(fork, "fork persona")
        logger.info("Forked persona %s into %s", original.id, fork.id)
        return fork
