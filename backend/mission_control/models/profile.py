"""
User profile model.

Accounts live with the external auth provider; a profile row is created the
first time a token for a new subject is seen.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, Float
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class Profile(Base):
    """Per-user preferences for chat and voice."""

    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=True, index=True)
    display_name = Column(String(100), nullable=True)
    avatar_url = Column(String(500), nullable=True)

    # Chat defaults
    default_model = Column(String(200), nullable=True)
    system_prompt = Column(Text, nullable=True)
    temperature = Column(Float, default=0.7)
    max_tokens = Column(Integer, default=4096)

    # Voice defaults
    tts_provider = Column(String(20), default="openai")
    tts_voice = Column(String(100), default="alloy")
    stt_provider = Column(String(20), default="whisper")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now())

    conversations = relationship("Conversation", back_populates="user")
