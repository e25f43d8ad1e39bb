"""
Conversation export to JSON and Markdown.

Only the active branch is exported, in the order the messages were written.
"""

import json
from datetime import datetime
from typing import Any, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..schemas.conversation import ExportedConversation, ExportedConversationInfo, ExportedMessage
from .conversation_service import ConversationService, utcnow


EXPORT_FORMATS = {
    "json": "application/json",
    "md": "text/markdown",
}

_ROLE_LABELS = {
    "user": "**User**",
    "assistant": "**Assistant**",
    "system": "**System**",
    "tool": "**Tool**",
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _display_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "Unknown"


class ExportService:
    """Builds export documents for a conversation."""

    def __init__(self, db: AsyncSession):
        self.conversations = ConversationService(db)

    async def export_conversation_as_json(self, conversation_id: str, user_id: Optional[str] = None) -> ExportedConversation:
        conversation, messages = await self.conversations.get_conversation_with_messages(conversation_id, user_id)

        return ExportedConversation(
            conversation=ExportedConversationInfo(
                id=conversation.id,
                title=conversation.title,
                summary=conversation.summary,
                model_used=conversation.model_used,
                agent_type=conversation.agent_type,
                message_count=conversation.message_count,
                total_tokens=conversation.total_tokens,
                created_at=_iso(conversation.created_at),
                updated_at=_iso(conversation.updated_at),
                metadata=conversation.conversation_metadata or {},
            ),
            messages=[
                ExportedMessage(
                    id=msg.id,
                    role=msg.role,
                    content=msg.content,
                    content_type=msg.content_type,
                    tool_name=msg.tool_name,
                    tool_input=msg.tool_input,
                    tool_output=msg.tool_output,
                    tokens_used=msg.tokens_used,
                    created_at=_iso(msg.created_at),
                    metadata=msg.message_metadata or {},
                )
                for msg in messages
            ],
            exported_at=utcnow().isoformat(),
        )

    async def export_conversation_as_markdown(self, conversation_id: str, user_id: Optional[str] = None) -> str:
        conversation, messages = await self.conversations.get_conversation_with_messages(conversation_id, user_id)

        md_content = f"# {conversation.title or 'Conversation'}\n\n"
        md_content += f"**Created:** {_display_time(conversation.created_at)}\n"
        md_content += f"**Model:** {conversation.model_used or 'Unknown'}\n"
        md_content += f"**Messages:** {conversation.message_count}\n\n"
        md_content += "---\n\n"

        for msg in messages:
            label = _ROLE_LABELS.get(msg.role, f"**{msg.role.title()}**")
            md_content += f"### {label} ({_display_time(msg.created_at)})\n\n"
            md_content += f"{msg.content}\n\n"

            if msg.tool_name:
                md_content += f"> Tool used: `{msg.tool_name}`\n\n"

            md_content += "---\n\n"

        return md_content


def render_export(data: Any, format: str, filename: Optional[str] = None) -> Tuple[str, str, str]:
    """
    Serialize an export for download.

    Returns ``(content, media_type, filename)``.
    """
    if format not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {format}")

    if format == "json":
        if isinstance(data, ExportedConversation):
            data = data.model_dump()
        content = json.dumps(data, indent=2, ensure_ascii=False)
    else:
        content = data

    return content, EXPORT_FORMATS[format], filename or f"conversation-export.{format}"
