"""
Schemas for the conversation branch tree.
"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime


MAIN_BRANCH = "main"


class BranchNode(BaseModel):
    """A message's place in the conversation tree."""
    id: str
    parent_id: Optional[str] = None
    child_ids: List[str] = []
    branch_id: str = MAIN_BRANCH
    depth: int = 0
    sibling_index: int = 0
    sibling_count: int = 1
    is_on_active_path: bool = False


class ConversationBranchInfo(BaseModel):
    id: str
    name: str
    parent_message_id: Optional[str] = None
    message_ids: List[str] = []
    is_active: bool = False
    created_at: Optional[datetime] = None


class ConversationTree(BaseModel):
    nodes: Dict[str, BranchNode] = {}
    root_ids: List[str] = []
    branches: List[ConversationBranchInfo] = []
    active_branch_id: str = MAIN_BRANCH
    active_path: List[str] = []


class BranchPoint(BaseModel):
    """A message with more than one child."""
    message_id: str
    child_branch_ids: List[str]
    selected_index: int = 0
    total_branches: int


class CreateBranchRequest(BaseModel):
    """Fork the conversation by adding an edited message under ``parent_message_id``."""
    parent_message_id: Optional[str] = None
    content: str = Field(..., min_length=1)
    role: str = Field("user", pattern=r"^(user|assistant|system|tool)$")
    branch_name: Optional[str] = Field(None, max_length=100)


class SwitchBranchRequest(BaseModel):
    branch_id: str


class NavigateSiblingRequest(BaseModel):
    message_id: str
    direction: str = Field(..., pattern=r"^(next|prev)$")


class BranchOperationResult(BaseModel):
    success: bool
    branch_id: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
