"""
Conversation management routes: CRUD, messages, branching, export and import.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from ..database import get_db
from ..models.profile import Profile
from ..schemas.branching import (
    BranchOperationResult,
    BranchPoint,
    ConversationBranchInfo,
    ConversationTree,
    CreateBranchRequest,
    NavigateSiblingRequest,
    SwitchBranchRequest,
)
from ..schemas.conversation import (
    ConversationCreate,
    ConversationCreateWithMessage,
    ConversationResponse,
    ConversationUpdate,
    ConversationWithMessages,
    ExportedConversation,
)
from ..schemas.message import MessageAppend, MessageCreate, MessageResponse, MessageUpdate
from ..services.branch_service import BranchService
from ..services.conversation_service import ConversationService
from ..services.export_service import ExportService, render_export
from ..utils.security import get_current_user_optional, user_id_of


router = APIRouter(prefix="/api/conversations", tags=["Conversations"])


def _bad_request(e: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("", response_model=List[ConversationResponse])
async def list_conversations(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    include_archived: bool = False,
    agent_type: Optional[str] = None,
    search: Optional[str] = None,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """List conversations, pinned first then most recently updated."""
    return await ConversationService(db).list_conversations(
        user_id_of(current_user),
        limit=limit,
        offset=offset,
        include_archived=include_archived,
        agent_type=agent_type,
        search=search,
    )


@router.get("/search", response_model=List[ConversationResponse])
async def search_conversations(
    q: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    include_archived: bool = False,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Search titles, summaries and message content."""
    return await ConversationService(db).search_conversations(
        q, user_id_of(current_user), limit=limit, include_archived=include_archived
    )


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    conversation_data: ConversationCreate,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    return await ConversationService(db).create_conversation(conversation_data, user_id_of(current_user))


@router.post("/with-message", response_model=ConversationWithMessages, status_code=status.HTTP_201_CREATED)
async def create_conversation_with_message(
    data: ConversationCreateWithMessage,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Start a conversation from its first message; the title is derived from it."""
    conversation, message = await ConversationService(db).create_conversation_with_message(
        data, user_id_of(current_user)
    )
    return {
        **ConversationResponse.model_validate(conversation).model_dump(),
        "messages": [MessageResponse.model_validate(message)]
    }


@router.post("/import", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def import_conversation(
    exported: ExportedConversation,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Recreate a conversation from a JSON export."""
    return await ConversationService(db).import_conversation(exported, user_id_of(current_user))


@router.get("/{conversation_id}", response_model=ConversationWithMessages)
async def get_conversation(
    conversation_id: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Get a conversation with the messages of its active branch."""
    conversation, messages = await ConversationService(db).get_conversation_with_messages(
        conversation_id, user_id_of(current_user)
    )
    return {
        **ConversationResponse.model_validate(conversation).model_dump(),
        "messages": [MessageResponse.model_validate(msg) for msg in messages]
    }


@router.patch("/{conversation_id}", response_model=ConversationResponse)
async def update_conversation(
    conversation_id: str,
    updates: ConversationUpdate,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    return await ConversationService(db).update_conversation(conversation_id, updates, user_id_of(current_user))


@router.post("/{conversation_id}/archive", response_model=ConversationResponse)
async def archive_conversation(
    conversation_id: str,
    archive: bool = True,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    return await ConversationService(db).archive_conversation(conversation_id, user_id_of(current_user), archive)


@router.post("/{conversation_id}/pin", response_model=ConversationResponse)
async def pin_conversation(
    conversation_id: str,
    pin: bool = True,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    return await ConversationService(db).pin_conversation(conversation_id, user_id_of(current_user), pin)


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Delete a conversation and all of its messages."""
    await ConversationService(db).delete_conversation(conversation_id, user_id_of(current_user))


# Messages

@router.get("/{conversation_id}/messages", response_model=List[MessageResponse])
async def list_messages(
    conversation_id: str,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    active_branch_only: bool = True,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    service = ConversationService(db)
    await service.require_conversation(conversation_id, user_id_of(current_user))
    return await service.get_messages(conversation_id, limit, offset, active_branch_only)


@router.post("/{conversation_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def append_message(
    conversation_id: str,
    message: MessageAppend,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Append a message; it becomes the active leaf."""
    service = ConversationService(db)
    await service.require_conversation(conversation_id, user_id_of(current_user))
    try:
        return await service.create_message(
            MessageCreate(conversation_id=conversation_id, **message.model_dump())
        )
    except ValueError as e:
        raise _bad_request(e)


@router.patch("/{conversation_id}/messages/{message_id}", response_model=MessageResponse)
async def update_message(
    conversation_id: str,
    message_id: str,
    updates: MessageUpdate,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Rate a message or attach feedback and metadata."""
    service = ConversationService(db)
    await service.require_conversation(conversation_id, user_id_of(current_user))
    await service.require_message(message_id, conversation_id)
    return await service.update_message(message_id, updates)


@router.delete("/{conversation_id}/messages/{message_id}")
async def delete_message(
    conversation_id: str,
    message_id: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Delete a message together with every reply below it."""
    service = ConversationService(db)
    await service.require_conversation(conversation_id, user_id_of(current_user))
    await service.require_message(message_id, conversation_id)
    removed = await service.delete_message(message_id)
    return {"deleted": removed}


# Export

@router.get("/{conversation_id}/export")
async def export_conversation(
    conversation_id: str,
    format: str = Query("json", pattern=r"^(json|md)$"),
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Download the active branch as JSON or Markdown."""
    service = ExportService(db)
    if format == "json":
        data = await service.export_conversation_as_json(conversation_id, user_id_of(current_user))
    else:
        data = await service.export_conversation_as_markdown(conversation_id, user_id_of(current_user))

    content, media_type, filename = render_export(data, format, f"conversation-{conversation_id}.{format}")
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


# Branching

async def _require_visible(conversation_id: str, current_user: Optional[Profile], db: AsyncSession) -> None:
    await ConversationService(db).require_conversation(conversation_id, user_id_of(current_user))


@router.get("/{conversation_id}/tree", response_model=ConversationTree)
async def get_tree(
    conversation_id: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    await _require_visible(conversation_id, current_user, db)
    return await BranchService(db).get_tree(conversation_id)


@router.get("/{conversation_id}/branches", response_model=List[ConversationBranchInfo])
async def list_branches(
    conversation_id: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    await _require_visible(conversation_id, current_user, db)
    return await BranchService(db).get_branches_for_conversation(conversation_id)


@router.get("/{conversation_id}/branch-points", response_model=List[BranchPoint])
async def list_branch_points(
    conversation_id: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    await _require_visible(conversation_id, current_user, db)
    return await BranchService(db).get_branch_points(conversation_id)


@router.get("/{conversation_id}/branches/{branch_id}/messages", response_model=List[MessageResponse])
async def get_branch_messages(
    conversation_id: str,
    branch_id: str,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Messages from the root down to the tip of ``branch_id``."""
    await _require_visible(conversation_id, current_user, db)
    return await BranchService(db).get_messages_for_branch(conversation_id, branch_id)


@router.post("/{conversation_id}/branches", response_model=BranchOperationResult, status_code=status.HTTP_201_CREATED)
async def create_branch(
    conversation_id: str,
    request: CreateBranchRequest,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Fork the conversation with an edited message."""
    await _require_visible(conversation_id, current_user, db)
    try:
        return await BranchService(db).create_branch_from_edit(conversation_id, request)
    except ValueError as e:
        raise _bad_request(e)


@router.post("/{conversation_id}/branches/switch", response_model=BranchOperationResult)
async def switch_branch(
    conversation_id: str,
    request: SwitchBranchRequest,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    await _require_visible(conversation_id, current_user, db)
    return await BranchService(db).switch_branch(conversation_id, request.branch_id)


@router.post("/{conversation_id}/branches/navigate", response_model=BranchOperationResult)
async def navigate_sibling(
    conversation_id: str,
    request: NavigateSiblingRequest,
    current_user: Optional[Profile] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db)
):
    """Move to the next or previous alternative at a branch point."""
    await _require_visible(conversation_id, current_user, db)
    try:
        return await BranchService(db).navigate_sibling(conversation_id, request.message_id, request.direction)
    except ValueError as e:
        raise _bad_request(e)
