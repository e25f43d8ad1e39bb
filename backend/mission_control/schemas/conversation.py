"""
Conversation-related Pydantic schemas.
"""

from pydantic import AliasChoices, BaseModel, Field
from typing import Optional, List, Any, Dict
from datetime import datetime

from .message import MessageResponse, ROLE_PATTERN


class ConversationCreate(BaseModel):
    """Schema for creating a conversation."""
    title: Optional[str] = Field(None, max_length=500)
    summary: Optional[str] = None
    agent_type: str = Field("general", max_length=50)
    project_id: Optional[str] = None
    model_used: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConversationCreateWithMessage(ConversationCreate):
    """Create a conversation and its first message in one call."""
    content: str = Field(..., min_length=1)
    role: str = Field("user", pattern=ROLE_PATTERN)


class ConversationUpdate(BaseModel):
    """Schema for updating a conversation."""
    title: Optional[str] = Field(None, max_length=500)
    summary: Optional[str] = None
    agent_type: Optional[str] = Field(None, max_length=50)
    model_used: Optional[str] = None
    is_archived: Optional[bool] = None
    is_pinned: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


class MessageExchange(BaseModel):
    """A user prompt and the assistant reply, saved together."""
    user_content: str
    assistant_content: str
    model: Optional[str] = None
    tokens_used: int = Field(0, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConversationResponse(BaseModel):
    """Conversation response schema."""
    id: str
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    agent_type: str
    title: Optional[str] = None
    summary: Optional[str] = None
    model_used: Optional[str] = None
    total_tokens: int = 0
    message_count: int = 0
    is_archived: bool = False
    is_pinned: bool = False
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("conversation_metadata", "metadata"),
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConversationWithMessages(ConversationResponse):
    """Conversation with its active branch."""
    messages: List[MessageResponse] = []


class ExportedConversationInfo(BaseModel):
    id: str
    title: Optional[str] = None
    summary: Optional[str] = None
    model_used: Optional[str] = None
    agent_type: str = "general"
    message_count: int = 0
    total_tokens: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExportedMessage(BaseModel):
    id: str
    role: str = Field(..., pattern=ROLE_PATTERN)
    content: str
    content_type: str = "text"
    tool_name: Optional[str] = None
    tool_input: Optional[Dict[str, Any]] = None
    tool_output: Optional[Dict[str, Any]] = None
    tokens_used: int = 0
    created_at: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExportedConversation(BaseModel):
    """JSON export document. Also accepted by the import endpoint."""
    conversation: ExportedConversationInfo
    messages: List[ExportedMessage] = []
    exported_at: str
