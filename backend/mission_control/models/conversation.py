"""
Conversation database model.
"""

import uuid

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, Index, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Conversation(Base):
    """A chat session. Its messages form a tree of branches."""

    __tablename__ = "meta_conversations"

    __table_args__ = (
        Index("ix_meta_conversations_user_updated", "user_id", "updated_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    project_id = Column(String(64), nullable=True)
    agent_type = Column(String(50), default="general", nullable=False)

    title = Column(String(500), nullable=True)
    summary = Column(Text, nullable=True)
    model_used = Column(String(200), nullable=True)

    # Statistics
    total_tokens = Column(Integer, default=0, nullable=False)
    message_count = Column(Integer, default=0, nullable=False)

    is_archived = Column(Boolean, default=False, nullable=False)
    is_pinned = Column(Boolean, default=False, nullable=False)

    # "metadata" is reserved on declarative classes
    conversation_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now())

    user = relationship("Profile", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.position",
    )
