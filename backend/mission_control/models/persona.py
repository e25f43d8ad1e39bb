"""
Persona database model.
"""

import uuid

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, JSON, Index
from sqlalchemy.sql import func

from ..database import Base


class Persona(Base):
    """A reusable assistant personality with its own prompt and model settings."""

    __tablename__ = "personas"

    __table_args__ = (
        Index("ix_personas_visibility_featured", "visibility", "is_featured"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_id = Column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)

    name = Column(String(100), nullable=False)
    slug = Column(String(50), unique=True, index=True, nullable=False)
    avatar_url = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=True, index=True)

    system_prompt = Column(Text, nullable=False)
    starter_prompts = Column(JSON, default=list)

    personality = Column(JSON, default=dict)
    capabilities = Column(JSON, default=dict)
    model_settings = Column("model_config", JSON, default=dict)
    voice_config = Column(JSON, nullable=True)

    visibility = Column(String(20), default="private", nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    forked_from = Column(String(36), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now())
