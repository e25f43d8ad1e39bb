"""
Conversation and message persistence.

All writes that change which messages are visible run in one transaction:
the new row, the counters and the active-path flags are committed together
or rolled back together.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, desc, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import NotFoundError, StorageError
from ..logger import get_logger
from ..models.conversation import Conversation
from ..models.message import Message
from ..schemas.branching import MAIN_BRANCH
from ..schemas.conversation import (
    ConversationCreate,
    ConversationCreateWithMessage,
    ConversationUpdate,
    ExportedConversation,
    MessageExchange,
)
from ..schemas.message import MessageCreate, MessageUpdate
from . import message_tree

logger = get_logger(__name__)

TITLE_MAX_LENGTH = 60
TITLE_MIN_BREAK_INDEX = 20
_TITLE_BREAK_POINTS = (". ", "? ", "! ", ", ", " ")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_title_from_message(content: str) -> str:
    """
    Derive a conversation title from its first message.

    Short messages are used as-is. Longer ones are cut at the last sentence,
    clause or word boundary that still leaves a meaningful title, keeping
    the punctuation. Without a usable boundary the text is truncated and
    marked with an ellipsis.
    """
    title = (content or "").strip()
    if len(title) <= TITLE_MAX_LENGTH:
        return title

    for break_point in _TITLE_BREAK_POINTS:
        keep = 0 if break_point == " " else 1
        idx = title.rfind(break_point, 0, TITLE_MAX_LENGTH - keep + len(break_point))
        if idx > TITLE_MIN_BREAK_INDEX:
            return title[:idx + keep].strip()

    return title[:TITLE_MAX_LENGTH].strip() + "..."


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class ConversationService:
    """Service for conversations and their messages."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Conversations

    @staticmethod
    def _visible_to(user_id: Optional[str]):
        if user_id is None:
            return Conversation.user_id.is_(None)
        return or_(Conversation.user_id == user_id, Conversation.user_id.is_(None))

    async def get_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> Optional[Conversation]:
        """Get a conversation visible to ``user_id``, or None."""
        result = await self.db.execute(
            select(Conversation).filter(
                Conversation.id == conversation_id,
                self._visible_to(user_id),
            )
        )
        return result.scalar_one_or_none()

    async def require_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> Conversation:
        conversation = await self.get_conversation(conversation_id, user_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    async def get_conversation_with_messages(
        self, conversation_id: str, user_id: Optional[str] = None
    ) -> Tuple[Conversation, List[Message]]:
        conversation = await self.require_conversation(conversation_id, user_id)
        messages = await self.get_messages(conversation_id)
        return conversation, messages

    async def create_conversation(self, data: ConversationCreate, user_id: Optional[str] = None) -> Conversation:
        now = utcnow()
        conversation = Conversation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            project_id=data.project_id,
            agent_type=data.agent_type,
            title=data.title,
            summary=data.summary,
            model_used=data.model_used,
            conversation_metadata=dict(data.metadata),
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.add(conversation)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("create conversation", e) from e

        await self.db.refresh(conversation)
        logger.info("Created conversation %s (agent=%s)", conversation.id, conversation.agent_type)
        return conversation

    async def list_conversations(
        self,
        user_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        include_archived: bool = False,
        agent_type: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Conversation]:
        """Pinned conversations first, then the most recently updated."""
        query = select(Conversation).filter(self._visible_to(user_id))

        if not include_archived:
            query = query.filter(Conversation.is_archived.is_(False))
        if agent_type:
            query = query.filter(Conversation.agent_type == agent_type)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Conversation.title.ilike(pattern), Conversation.summary.ilike(pattern)))

        query = (
            query.order_by(desc(Conversation.is_pinned), desc(Conversation.updated_at), desc(Conversation.created_at))
            .offset(offset)
            .limit(limit)
        )
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StorageError("list conversations", e) from e
        return list(result.scalars().all())

    async def search_conversations(
        self,
        query: str,
        user_id: Optional[str] = None,
        limit: int = 20,
        include_archived: bool = False,
    ) -> List[Conversation]:
        """Match the query against titles, summaries and message content."""
        pattern = f"%{query}%"
        matching_messages = select(Message.conversation_id).filter(Message.content.ilike(pattern))

        stmt = select(Conversation).filter(
            self._visible_to(user_id),
            or_(
                Conversation.title.ilike(pattern),
                Conversation.summary.ilike(pattern),
                Conversation.id.in_(matching_messages),
            ),
        )
        if not include_archived:
            stmt = stmt.filter(Conversation.is_archived.is_(False))
        stmt = stmt.order_by(desc(Conversation.updated_at)).limit(limit)

        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError("search conversations", e) from e
        return list(result.scalars().all())

    async def update_conversation(
        self, conversation_id: str, updates: ConversationUpdate, user_id: Optional[str] = None
    ) -> Conversation:
        conversation = await self.require_conversation(conversation_id, user_id)

        for field, value in updates.model_dump(exclude_unset=True).items():
            if field == "metadata":
                conversation.conversation_metadata = value or {}
            elif value is not None or field in ("title", "summary", "model_used"):
                setattr(conversation, field, value)
        conversation.updated_at = utcnow()

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("update conversation", e) from e

        await self.db.refresh(conversation)
        return conversation

    async def archive_conversation(self, conversation_id: str, user_id: Optional[str] = None, archive: bool = True) -> Conversation:
        return await self.update_conversation(conversation_id, ConversationUpdate(is_archived=archive), user_id)

    async def pin_conversation(self, conversation_id: str, user_id: Optional[str] = None, pin: bool = True) -> Conversation:
        return await self.update_conversation(conversation_id, ConversationUpdate(is_pinned=pin), user_id)

    async def delete_conversation(self, conversation_id: str, user_id: Optional[str] = None) -> None:
        conversation = await self.require_conversation(conversation_id, user_id)
        try:
            await self.db.execute(delete(Message).where(Message.conversation_id == conversation.id))
            await self.db.delete(conversation)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("delete conversation", e) from e
        logger.info("Deleted conversation %s", conversation_id)

    async def create_conversation_with_message(
        self, data: ConversationCreateWithMessage, user_id: Optional[str] = None
    ) -> Tuple[Conversation, Message]:
        """Create a conversation titled from its first message, then append that message."""
        fields = data.model_dump(exclude={"content", "role"})
        if not fields.get("title"):
            fields["title"] = generate_title_from_message(data.content) or None
        conversation = await self.create_conversation(ConversationCreate(**fields), user_id)
        message = await self.create_message(MessageCreate(
            conversation_id=conversation.id,
            role=data.role,
            content=data.content,
        ))
        await self.db.refresh(conversation)
        return conversation, message

    async def save_message_exchange(
        self, conversation_id: str, exchange: MessageExchange
    ) -> Tuple[Message, Message]:
        """Append a user prompt and the assistant reply to the active branch."""
        user_message = await self.create_message(MessageCreate(
            conversation_id=conversation_id,
            role="user",
            content=exchange.user_content,
        ))
        metadata = dict(exchange.metadata)
        if exchange.model:
            metadata["model"] = exchange.model
        assistant_message = await self.create_message(MessageCreate(
            conversation_id=conversation_id,
            role="assistant",
            content=exchange.assistant_content,
            tokens_used=exchange.tokens_used,
            metadata=metadata,
        ))
        return user_message, assistant_message

    # Messages

    async def load_all_messages(self, conversation_id: str) -> List[Message]:
        """Every message of the conversation, all branches, in insertion order."""
        result = await self.db.execute(
            select(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.position)
        )
        return list(result.scalars().all())

    async def get_messages(
        self,
        conversation_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        active_branch_only: bool = True,
    ) -> List[Message]:
        query = select(Message).filter(Message.conversation_id == conversation_id)
        if active_branch_only:
            query = query.filter(Message.is_active_branch.is_(True))
        query = query.order_by(Message.position).offset(offset)
        if limit is not None:
            query = query.limit(limit)

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StorageError("get messages", e) from e
        return list(result.scalars().all())

    async def get_message(self, message_id: str) -> Optional[Message]:
        result = await self.db.execute(select(Message).filter(Message.id == message_id))
        return result.scalar_one_or_none()

    async def require_message(self, message_id: str, conversation_id: Optional[str] = None) -> Message:
        message = await self.get_message(message_id)
        if message is None or (conversation_id is not None and message.conversation_id != conversation_id):
            raise NotFoundError("Message not found")
        return message

    async def create_message(self, data: MessageCreate) -> Message:
        """
        Append a message and make it the active leaf.

        Without ``parent_message_id`` the message continues the active path.
        A parent that already has children makes the message start a new branch.
        """
        conversation = await self.require_conversation_row(data.conversation_id)
        messages = await self.load_all_messages(conversation.id)

        if data.parent_message_id is not None:
            parent = next((m for m in messages if m.id == data.parent_message_id), None)
            if parent is None:
                raise NotFoundError("Parent message not found")
        else:
            parent = message_tree.active_leaf(messages)

        fields = data.model_dump(exclude={"conversation_id", "parent_message_id", "branch_name", "metadata"})
        fields["message_metadata"] = dict(data.metadata)
        return await self.insert_message(
            conversation, messages, parent, fields, branch_name=data.branch_name, action="create message"
        )

    async def insert_message(
        self,
        conversation: Conversation,
        messages: Sequence[Message],
        parent: Optional[Message],
        fields: Dict[str, Any],
        branch_name: Optional[str] = None,
        action: str = "create message",
    ) -> Message:
        """Insert under ``parent`` (None = new root) and activate the path to it."""
        children = message_tree.children_map(messages)
        siblings = children.get(parent.id if parent else None, [])

        if branch_name is not None:
            owner = next((m for m in messages if message_tree.branch_id_of(m) == branch_name), None)
            extends_tip = parent is not None and message_tree.branch_id_of(parent) == branch_name and not siblings
            if owner is not None and not extends_tip:
                raise ValueError(f"Branch '{branch_name}' already exists")
            # main-branch rows store no name
            if branch_name == MAIN_BRANCH:
                branch_name = None
        elif siblings:
            branch_name = f"branch-{uuid.uuid4().hex[:8]}"
        elif parent is not None:
            branch_name = parent.branch_name

        by_id = {m.id: m for m in messages}
        keep = message_tree.path_to_root(by_id, parent.id) if parent else []

        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation.id,
            parent_message_id=parent.id if parent else None,
            branch_name=branch_name,
            is_active_branch=True,
            position=max((m.position for m in messages), default=-1) + 1,
            created_at=utcnow(),
            **fields,
        )
        keep.append(message.id)

        try:
            self.db.add(message)
            await self.db.flush()
            await self.set_active_path(conversation.id, keep)
            conversation.message_count = (conversation.message_count or 0) + 1
            conversation.total_tokens = (conversation.total_tokens or 0) + (message.tokens_used or 0)
            conversation.updated_at = utcnow()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(action, e) from e

        await self.db.refresh(message)
        return message

    async def set_active_path(self, conversation_id: str, keep_ids: Sequence[str]) -> None:
        """
        Flag exactly ``keep_ids`` as the active path. Does not commit; callers
        commit together with their own changes.
        """
        keep_ids = list(keep_ids)
        await self.db.execute(
            update(Message)
            .where(Message.conversation_id == conversation_id, Message.id.not_in(keep_ids))
            .values(is_active_branch=False)
            .execution_options(synchronize_session="fetch")
        )
        if keep_ids:
            await self.db.execute(
                update(Message)
                .where(Message.conversation_id == conversation_id, Message.id.in_(keep_ids))
                .values(is_active_branch=True)
                .execution_options(synchronize_session="fetch")
            )

    async def update_message(self, message_id: str, updates: MessageUpdate) -> Message:
        message = await self.require_message(message_id)
        changes = updates.model_dump(exclude_unset=True)
        if "user_rating" in changes:
            message.user_rating = changes["user_rating"]
        if "user_feedback" in changes:
            message.user_feedback = changes["user_feedback"]
        if changes.get("metadata") is not None:
            message.message_metadata = {**(message.message_metadata or {}), **changes["metadata"]}

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("update message", e) from e

        await self.db.refresh(message)
        return message

    async def delete_message(self, message_id: str) -> List[str]:
        """
        Delete a message and every reply below it. When the active path ran
        through it, the path is cut back to its parent.
        """
        message = await self.require_message(message_id)
        conversation = await self.require_conversation_row(message.conversation_id)
        messages = await self.load_all_messages(conversation.id)

        removed = message_tree.subtree_ids(messages, message.id)
        removed_set = set(removed)
        was_active = message.is_active_branch
        remaining = [m for m in messages if m.id not in removed_set]
        tokens_removed = sum(m.tokens_used or 0 for m in messages if m.id in removed_set)

        keep = None
        if was_active and remaining:
            by_id = {m.id: m for m in remaining}
            if message.parent_message_id in by_id:
                keep = message_tree.path_to_root(by_id, message.parent_message_id)
            else:
                roots = message_tree.children_map(remaining)[None]
                keep = message_tree.descend_to_leaf(remaining, roots[-1])

        try:
            await self.db.execute(delete(Message).where(Message.id.in_(removed)))
            if keep is not None:
                await self.set_active_path(conversation.id, keep)
            conversation.message_count = max((conversation.message_count or 0) - len(removed), 0)
            conversation.total_tokens = max((conversation.total_tokens or 0) - tokens_removed, 0)
            conversation.updated_at = utcnow()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("delete message", e) from e

        return removed

    async def import_conversation(self, exported: ExportedConversation, user_id: Optional[str] = None) -> Conversation:
        """Recreate an exported conversation as a single main-branch chain."""
        info = exported.conversation
        now = utcnow()
        conversation = Conversation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            agent_type=info.agent_type,
            title=info.title,
            summary=info.summary,
            model_used=info.model_used,
            conversation_metadata={**info.metadata, "imported_from": info.id},
            created_at=_parse_timestamp(info.created_at) or now,
            updated_at=now,
        )

        parent_id = None
        rows = []
        for position, item in enumerate(exported.messages):
            row = Message(
                id=str(uuid.uuid4()),
                conversation_id=conversation.id,
                parent_message_id=parent_id,
                role=item.role,
                content=item.content,
                content_type=item.content_type,
                tool_name=item.tool_name,
                tool_input=item.tool_input,
                tool_output=item.tool_output,
                tokens_used=item.tokens_used,
                message_metadata=dict(item.metadata),
                is_active_branch=True,
                position=position,
                created_at=_parse_timestamp(item.created_at) or now,
            )
            rows.append(row)
            parent_id = row.id

        conversation.message_count = len(rows)
        conversation.total_tokens = sum(r.tokens_used for r in rows)

        try:
            self.db.add(conversation)
            await self.db.flush()
            self.db.add_all(rows)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("import conversation", e) from e

        await self.db.refresh(conversation)
        logger.info("Imported conversation %s as %s (%d messages)", info.id, conversation.id, len(rows))
        return conversation

    async def require_conversation_row(self, conversation_id: str) -> Conversation:
        result = await self.db.execute(select(Conversation).filter(Conversation.id == conversation_id))
        conversation = result.scalar_one_or_none()
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation
