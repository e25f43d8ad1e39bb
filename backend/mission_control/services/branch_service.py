"""
Conversation branching.

A branch is the set of messages sharing a ``branch_name``. Edits and
regenerations fork the tree under an existing message; switching a branch
moves the active path onto it. After every operation here the active
messages of a conversation form exactly one root-to-leaf path.
"""

import time
from typing import List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import NotFoundError, StorageError
from ..logger import get_logger
from ..models.message import Message
from ..schemas.branching import (
    BranchOperationResult,
    BranchPoint,
    ConversationBranchInfo,
    ConversationTree,
    CreateBranchRequest,
)
from . import message_tree
from .conversation_service import ConversationService, utcnow

logger = get_logger(__name__)


def _unique_branch_name(messages: Sequence[Message], prefix: str) -> str:
    existing = {m.branch_name for m in messages}
    base = f"{prefix}-{int(time.time() * 1000)}"
    name = base
    suffix = 1
    while name in existing:
        suffix += 1
        name = f"{base}-{suffix}"
    return name


class BranchService:
    """Tree queries and branch mutations for one conversation at a time."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversations = ConversationService(db)

    async def get_tree(self, conversation_id: str) -> ConversationTree:
        messages = await self.conversations.load_all_messages(conversation_id)
        return message_tree.build_conversation_tree(messages)

    async def get_branch_points(self, conversation_id: str) -> List[BranchPoint]:
        return message_tree.find_branch_points(await self.get_tree(conversation_id))

    async def get_branches_for_conversation(self, conversation_id: str) -> List[ConversationBranchInfo]:
        return (await self.get_tree(conversation_id)).branches

    async def get_messages_for_branch(self, conversation_id: str, branch_id: str) -> List[Message]:
        """The root-to-tip path a reader would see on ``branch_id``."""
        messages = await self.conversations.load_all_messages(conversation_id)
        on_branch = [m for m in messages if message_tree.branch_id_of(m) == branch_id]
        if not on_branch:
            raise NotFoundError(f"Branch '{branch_id}' not found")

        by_id = {m.id: m for m in messages}
        tip = max(on_branch, key=lambda m: (len(message_tree.path_to_root(by_id, m.id)), m.position))
        return [by_id[mid] for mid in message_tree.path_to_root(by_id, tip.id)]

    async def switch_branch(self, conversation_id: str, branch_id: str) -> BranchOperationResult:
        """
        Make ``branch_id`` the visible branch.

        Every message of the branch contributes its ancestors to the set that
        stays active; everything else in the conversation is deactivated. Both
        updates commit in a single transaction.
        """
        conversation = await self.conversations.require_conversation_row(conversation_id)
        messages = await self.conversations.load_all_messages(conversation.id)
        on_branch = [m for m in messages if message_tree.branch_id_of(m) == branch_id]
        if not on_branch:
            raise NotFoundError(f"Branch '{branch_id}' not found")

        by_id = {m.id: m for m in messages}
        keep = set()
        for message in on_branch:
            keep.update(message_tree.path_to_root(by_id, message.id))

        await self._commit_active_path(conversation, keep, "switch branch")
        logger.info("Conversation %s switched to branch %s", conversation_id, branch_id)

        tip = max(on_branch, key=lambda m: m.position)
        return BranchOperationResult(success=True, branch_id=branch_id, message_id=tip.id)

    async def create_branch_from_edit(
        self, conversation_id: str, request: CreateBranchRequest
    ) -> BranchOperationResult:
        """Add an edited message under ``parent_message_id`` as the start of a new branch."""
        conversation = await self.conversations.require_conversation_row(conversation_id)
        messages = await self.conversations.load_all_messages(conversation.id)

        parent = None
        if request.parent_message_id is not None:
            parent = next((m for m in messages if m.id == request.parent_message_id), None)
            if parent is None:
                raise NotFoundError("Parent message not found")

        branch_name = request.branch_name or _unique_branch_name(messages, "edit")
        if any(message_tree.branch_id_of(m) == branch_name for m in messages):
            raise ValueError(f"Branch '{branch_name}' already exists")

        message = await self.conversations.insert_message(
            conversation,
            messages,
            parent,
            {"role": request.role, "content": request.content, "message_metadata": {"edited": True}},
            branch_name=branch_name,
            action="create branch",
        )
        logger.info("Created branch %s in conversation %s", branch_name, conversation_id)
        return BranchOperationResult(success=True, branch_id=branch_name, message_id=message.id)

    async def navigate_sibling(self, conversation_id: str, message_id: str, direction: str) -> BranchOperationResult:
        """Show the next or previous alternative of ``message_id``, wrapping around."""
        if direction not in ("next", "prev"):
            raise ValueError("direction must be 'next' or 'prev'")

        conversation = await self.conversations.require_conversation_row(conversation_id)
        messages = await self.conversations.load_all_messages(conversation.id)
        by_id = {m.id: m for m in messages}
        current = by_id.get(message_id)
        if current is None:
            raise NotFoundError("Message not found")

        parent_id = current.parent_message_id if current.parent_message_id in by_id else None
        siblings = message_tree.children_map(messages)[parent_id]
        index = siblings.index(current)
        step = 1 if direction == "next" else -1
        target = siblings[(index + step) % len(siblings)]

        keep = message_tree.path_to_root(by_id, parent_id) if parent_id else []
        keep += message_tree.descend_to_leaf(messages, target, prefer_branch=message_tree.branch_id_of(target))
        await self._commit_active_path(conversation, keep, "switch branch")

        leaf = by_id[keep[-1]]
        return BranchOperationResult(success=True, branch_id=message_tree.branch_id_of(leaf), message_id=target.id)

    async def regenerate_response(
        self,
        conversation_id: str,
        message_id: str,
        llm,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> BranchOperationResult:
        """Ask the model again for ``message_id`` and store the answer as a sibling branch."""
        conversation = await self.conversations.require_conversation_row(conversation_id)
        messages = await self.conversations.load_all_messages(conversation.id)
        by_id = {m.id: m for m in messages}
        original = by_id.get(message_id)
        if original is None:
            raise NotFoundError("Message not found")
        if original.role != "assistant":
            raise ValueError("Only assistant messages can be regenerated")
        parent = by_id.get(original.parent_message_id) if original.parent_message_id else None
        if parent is None:
            raise ValueError("Cannot regenerate a message without a prompt")

        history = [
            {"role": by_id[mid].role, "content": by_id[mid].content}
            for mid in message_tree.path_to_root(by_id, parent.id)
        ]
        response = await llm.chat(
            history,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        branch_name = _unique_branch_name(messages, "regen")
        message = await self.conversations.insert_message(
            conversation,
            messages,
            parent,
            {
                "role": "assistant",
                "content": response["content"],
                "tokens_used": response.get("tokens_used", 0),
                "message_metadata": {"model": response.get("model_id"), "regenerated_from": original.id},
            },
            branch_name=branch_name,
            action="regenerate response",
        )
        return BranchOperationResult(success=True, branch_id=branch_name, message_id=message.id)

    async def _commit_active_path(self, conversation, keep_ids, action: str) -> None:
        try:
            await self.conversations.set_active_path(conversation.id, list(keep_ids))
            conversation.updated_at = utcnow()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(action, e) from e
