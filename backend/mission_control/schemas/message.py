"""
Message-related Pydantic schemas.
"""

from pydantic import AliasChoices, BaseModel, Field
from typing import Optional, List, Any, Dict
from datetime import datetime


ROLE_PATTERN = r"^(user|assistant|system|tool)$"
CONTENT_TYPE_PATTERN = r"^(text|markdown|code|image|audio)$"


class MessageCreate(BaseModel):
    """Schema for appending a message to a conversation."""
    conversation_id: str
    role: str = Field(..., pattern=ROLE_PATTERN)
    content: str
    content_type: str = Field("text", pattern=CONTENT_TYPE_PATTERN)
    tool_name: Optional[str] = None
    tool_input: Optional[Dict[str, Any]] = None
    tool_output: Optional[Dict[str, Any]] = None
    # None appends to the active leaf
    parent_message_id: Optional[str] = None
    branch_name: Optional[str] = Field(None, max_length=100)
    tokens_used: int = Field(0, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MessageAppend(BaseModel):
    """Body of POST /api/conversations/{id}/messages."""
    role: str = Field(..., pattern=ROLE_PATTERN)
    content: str
    content_type: str = Field("text", pattern=CONTENT_TYPE_PATTERN)
    tool_name: Optional[str] = None
    tool_input: Optional[Dict[str, Any]] = None
    tool_output: Optional[Dict[str, Any]] = None
    parent_message_id: Optional[str] = None
    branch_name: Optional[str] = Field(None, max_length=100)
    tokens_used: int = Field(0, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MessageUpdate(BaseModel):
    """Schema for rating or annotating a message."""
    user_rating: Optional[int] = Field(None, ge=1, le=5)
    user_feedback: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class MessageResponse(BaseModel):
    """Message response schema."""
    id: str
    conversation_id: str
    parent_message_id: Optional[str] = None
    role: str
    content: str
    content_type: str = "text"
    tool_name: Optional[str] = None
    tool_input: Optional[Dict[str, Any]] = None
    tool_output: Optional[Dict[str, Any]] = None
    branch_name: Optional[str] = None
    is_active_branch: bool = True
    tokens_used: int = 0
    user_rating: Optional[int] = None
    user_feedback: Optional[str] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("message_metadata", "metadata"),
    )
    created_at: datetime

    class Config:
        from_attributes = True


class ChatRequest(BaseModel):
    """Schema for sending a chat message."""
    conversation_id: Optional[str] = None  # If None, create new conversation
    message: str = Field(..., min_length=1)
    stream: bool = False
    persona_id: Optional[str] = None
    agent_type: str = "general"
    model: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0, le=2)
    max_tokens: Optional[int] = Field(None, gt=0)


class RegenerateRequest(BaseModel):
    """Schema for regenerating an assistant message on a new branch."""
    conversation_id: str
    message_id: str


class StreamChunk(BaseModel):
    """Schema for streaming response chunk."""
    type: str  # "content", "done", "error"
    content: Optional[str] = None
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    title: Optional[str] = None
    error: Optional[str] = None


class ChatResponse(BaseModel):
    """Non-streaming chat response."""
    message: MessageResponse
    user_message: Optional[MessageResponse] = None
    conversation_id: str
    title: Optional[str] = None
