"""
Message database model.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, JSON, Index, CheckConstraint
from sqlalchemy.orm import relationship

from ..database import Base


MESSAGE_ROLES = ("user", "assistant", "system", "tool")
CONTENT_TYPES = ("text", "markdown", "code", "image", "audio")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Message(Base):
    """
    A single chat message.

    ``parent_message_id`` links messages into a tree. Messages sharing a
    ``branch_name`` form one branch (``None`` is the main branch), and the
    messages with ``is_active_branch`` set form the root-to-leaf path the
    user currently sees.
    """

    __tablename__ = "meta_messages"

    __table_args__ = (
        Index("ix_meta_messages_conversation_position", "conversation_id", "position"),
        Index("ix_meta_messages_parent", "parent_message_id"),
        CheckConstraint("role IN ('user', 'assistant', 'system', 'tool')", name="ck_meta_messages_role"),
        CheckConstraint("user_rating IS NULL OR (user_rating BETWEEN 1 AND 5)", name="ck_meta_messages_rating"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(String(36), ForeignKey("meta_conversations.id", ondelete="CASCADE"), nullable=False)
    parent_message_id = Column(String(36), ForeignKey("meta_messages.id", ondelete="CASCADE"), nullable=True)

    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False, default="")
    content_type = Column(String(20), default="text", nullable=False)

    # Tool calls
    tool_name = Column(String(100), nullable=True)
    tool_input = Column(JSON, nullable=True)
    tool_output = Column(JSON, nullable=True)

    # Branching
    branch_name = Column(String(100), nullable=True)
    is_active_branch = Column(Boolean, default=True, nullable=False)

    tokens_used = Column(Integer, default=0, nullable=False)

    # Feedback
    user_rating = Column(Integer, nullable=True)
    user_feedback = Column(Text, nullable=True)

    message_metadata = Column("metadata", JSON, default=dict)

    # Insertion order within the conversation, stable even when timestamps tie
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
