"""
Tests for JSON/Markdown export and re-import.
"""

import json

import pytest

from mission_control.schemas.branching import CreateBranchRequest
from mission_control.schemas.conversation import ConversationCreate
from mission_control.schemas.message import MessageCreate
from mission_control.services.branch_service import BranchService
from mission_control.services.conversation_service import ConversationService
from mission_control.services.export_service import ExportService, render_export


@pytest.fixture
async def conversation(db):
    service = ConversationService(db)
    conversation = await service.create_conversation(
        ConversationCreate(title="Deploy plan", model_used="gpt-4o-mini")
    )
    await service.create_message(MessageCreate(conversation_id=conversation.id, role="user", content="How do we deploy?"))
    answer = await service.create_message(MessageCreate(
        conversation_id=conversation.id, role="assistant", content="Use the pipeline.", tokens_used=12
    ))
    await service.create_message(MessageCreate(
        conversation_id=conversation.id, role="tool", content="pipeline ok", tool_name="ci_status"
    ))
    return conversation, answer


async def test_json_export_has_active_branch_in_order(db, conversation):
    conversation, answer = conversation

    exported = await ExportService(db).export_conversation_as_json(conversation.id)

    assert exported.conversation.id == conversation.id
    assert exported.conversation.title == "Deploy plan"
    assert exported.conversation.message_count == 3
    assert [m.role for m in exported.messages] == ["user", "assistant", "tool"]
    assert exported.messages[1].tokens_used == 12
    assert exported.exported_at


async def test_json_export_skips_inactive_branches(db, conversation):
    conversation, answer = conversation
    service = ConversationService(db)
    first_user = (await service.get_messages(conversation.id))[0]
    await BranchService(db).create_branch_from_edit(
        conversation.id, CreateBranchRequest(parent_message_id=None, content="unrelated")
    )
    await BranchService(db).switch_branch(conversation.id, "main")

    exported = await ExportService(db).export_conversation_as_json(conversation.id)
    assert exported.messages[0].id == first_user.id
    assert "unrelated" not in [m.content for m in exported.messages]


async def test_markdown_export_layout(db, conversation):
    conversation, answer = conversation

    markdown = await ExportService(db).export_conversation_as_markdown(conversation.id)

    assert markdown.startswith("# Deploy plan\n\n")
    assert "**Model:** gpt-4o-mini" in markdown
    assert "**Messages:** 3" in markdown
    assert "### **User** (" in markdown
    assert "### **Assistant** (" in markdown
    assert "### **Tool** (" in markdown
    assert "> Tool used: `ci_status`" in markdown
    assert markdown.count("---\n\n") == 4


def test_render_export_formats():
    content, media_type, filename = render_export({"a": 1}, "json")
    assert json.loads(content) == {"a": 1}
    assert media_type == "application/json"
    assert filename == "conversation-export.json"

    content, media_type, filename = render_export("# hi", "md", "notes.md")
    assert content == "# hi"
    assert media_type == "text/markdown"
    assert filename == "notes.md"

    with pytest.raises(ValueError):
        render_export("x", "pdf")


async def test_import_round_trip(db, conversation):
    conversation, answer = conversation
    exported = await ExportService(db).export_conversation_as_json(conversation.id)

    imported = await ConversationService(db).import_conversation(exported, user_id="alice")

    assert imported.id != conversation.id
    assert imported.user_id == "alice"
    assert imported.conversation_metadata["imported_from"] == conversation.id
    messages = await ConversationService(db).get_messages(imported.id)
    assert [m.content for m in messages] == ["How do we deploy?", "Use the pipeline.", "pipeline ok"]
    assert messages[1].parent_message_id == messages[0].id
    assert all(m.branch_name is None for m in messages)
