"""
Tests for the message tree and branch operations.
"""

import pytest
from sqlalchemy import Update
from sqlalchemy.exc import OperationalError

from mission_control.exceptions import NotFoundError, StorageError
from mission_control.schemas.branching import CreateBranchRequest
from mission_control.schemas.conversation import ConversationCreate
from mission_control.schemas.message import MessageCreate
from mission_control.services import message_tree
from mission_control.services.branch_service import BranchService
from mission_control.services.conversation_service import ConversationService

from conftest import FakeLLM


async def _say(service, conversation_id, role, content, parent_id=None):
    return await service.create_message(MessageCreate(
        conversation_id=conversation_id,
        role=role,
        content=content,
        parent_message_id=parent_id,
    ))


async def _active_ids(service, conversation_id):
    messages = await service.load_all_messages(conversation_id)
    return [m.id for m in messages if m.is_active_branch]


async def assert_single_active_path(service, conversation_id):
    messages = await service.load_all_messages(conversation_id)
    by_id = {m.id: m for m in messages}
    leaf = message_tree.active_leaf(messages)
    active = {m.id for m in messages if m.is_active_branch}
    assert leaf is not None
    assert active == set(message_tree.path_to_root(by_id, leaf.id))
    assert not any(m.is_active_branch for m in messages if m.parent_message_id == leaf.id)


@pytest.fixture
async def chain(db):
    """u1 -> a1 -> u2 -> a2, all on the main branch."""
    service = ConversationService(db)
    conversation = await service.create_conversation(ConversationCreate(title="Branching"))
    u1 = await _say(service, conversation.id, "user", "first question")
    a1 = await _say(service, conversation.id, "assistant", "first answer")
    u2 = await _say(service, conversation.id, "user", "second question")
    a2 = await _say(service, conversation.id, "assistant", "second answer")
    return service, conversation, [u1, a1, u2, a2]


async def test_appended_messages_form_a_chain(chain):
    service, conversation, (u1, a1, u2, a2) = chain

    assert u1.parent_message_id is None
    assert a1.parent_message_id == u1.id
    assert a2.parent_message_id == u2.id
    assert all(m.branch_name is None for m in (u1, a1, u2, a2))
    assert await _active_ids(service, conversation.id) == [u1.id, a1.id, u2.id, a2.id]

    conversation = await service.require_conversation_row(conversation.id)
    assert conversation.message_count == 4
    await assert_single_active_path(service, conversation.id)


async def test_explicit_parent_with_children_starts_new_branch(chain):
    service, conversation, (u1, a1, u2, a2) = chain

    alt = await _say(service, conversation.id, "user", "another question", parent_id=a1.id)

    assert alt.branch_name is not None
    assert alt.branch_name.startswith("branch-")
    assert await _active_ids(service, conversation.id) == [u1.id, a1.id, alt.id]
    await assert_single_active_path(service, conversation.id)


async def test_edit_creates_branch_and_moves_active_path(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain
    branches = BranchService(db)

    result = await branches.create_branch_from_edit(
        conversation.id,
        CreateBranchRequest(parent_message_id=a1.id, content="second question, reworded"),
    )

    assert result.success
    assert result.branch_id.startswith("edit-")
    edited = await service.require_message(result.message_id)
    assert edited.parent_message_id == a1.id
    assert edited.branch_name == result.branch_id
    assert edited.message_metadata == {"edited": True}
    assert await _active_ids(service, conversation.id) == [u1.id, a1.id, edited.id]

    # continuing the conversation stays on the edit branch
    reply = await _say(service, conversation.id, "assistant", "answer to the rewording")
    assert reply.parent_message_id == edited.id
    assert reply.branch_name == result.branch_id
    await assert_single_active_path(service, conversation.id)


async def test_edit_rejects_existing_branch_name(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain
    branches = BranchService(db)
    await branches.create_branch_from_edit(
        conversation.id, CreateBranchRequest(parent_message_id=a1.id, content="x", branch_name="alt")
    )

    with pytest.raises(ValueError):
        await branches.create_branch_from_edit(
            conversation.id, CreateBranchRequest(parent_message_id=u1.id, content="y", branch_name="alt")
        )


async def test_edit_without_parent_creates_new_root(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain

    result = await BranchService(db).create_branch_from_edit(
        conversation.id, CreateBranchRequest(content="start over")
    )

    root = await service.require_message(result.message_id)
    assert root.parent_message_id is None
    assert await _active_ids(service, conversation.id) == [root.id]


async def test_switch_branch_round_trip(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain
    branches = BranchService(db)
    edit = await branches.create_branch_from_edit(
        conversation.id, CreateBranchRequest(parent_message_id=a1.id, content="edited")
    )
    reply = await _say(service, conversation.id, "assistant", "edited answer")

    result = await branches.switch_branch(conversation.id, "main")
    assert result.success
    assert result.message_id == a2.id
    assert await _active_ids(service, conversation.id) == [u1.id, a1.id, u2.id, a2.id]
    await assert_single_active_path(service, conversation.id)

    result = await branches.switch_branch(conversation.id, edit.branch_id)
    assert result.message_id == reply.id
    assert await _active_ids(service, conversation.id) == [u1.id, a1.id, edit.message_id, reply.id]
    await assert_single_active_path(service, conversation.id)


async def test_switch_to_unknown_branch_leaves_state_untouched(db, chain):
    service, conversation, messages = chain
    before = await _active_ids(service, conversation.id)

    with pytest.raises(NotFoundError):
        await BranchService(db).switch_branch(conversation.id, "does-not-exist")

    assert await _active_ids(service, conversation.id) == before


async def test_navigate_sibling_wraps_around(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain
    branches = BranchService(db)
    edit = await branches.create_branch_from_edit(
        conversation.id, CreateBranchRequest(parent_message_id=a1.id, content="edited")
    )
    await branches.switch_branch(conversation.id, "main")

    result = await branches.navigate_sibling(conversation.id, u2.id, "next")
    assert result.message_id == edit.message_id
    assert await _active_ids(service, conversation.id) == [u1.id, a1.id, edit.message_id]

    # past the last sibling wraps back to the first, descending along main
    result = await branches.navigate_sibling(conversation.id, edit.message_id, "next")
    assert result.message_id == u2.id
    assert result.branch_id == "main"
    assert await _active_ids(service, conversation.id) == [u1.id, a1.id, u2.id, a2.id]


async def test_navigate_sibling_rejects_bad_direction(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain
    with pytest.raises(ValueError):
        await BranchService(db).navigate_sibling(conversation.id, u2.id, "sideways")


async def test_regenerate_adds_sibling_response(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain
    llm = FakeLLM(replies=["a better second answer"])

    result = await BranchService(db).regenerate_response(conversation.id, a2.id, llm)

    assert result.branch_id.startswith("regen-")
    regenerated = await service.require_message(result.message_id)
    assert regenerated.parent_message_id == u2.id
    assert regenerated.content == "a better second answer"
    assert regenerated.message_metadata["regenerated_from"] == a2.id
    assert [m["content"] for m in llm.calls[0]["history"]] == [
        "first question", "first answer", "second question"
    ]
    assert await _active_ids(service, conversation.id) == [u1.id, a1.id, u2.id, regenerated.id]


async def test_regenerate_requires_assistant_message(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain
    with pytest.raises(ValueError):
        await BranchService(db).regenerate_response(conversation.id, u2.id, FakeLLM())


async def test_tree_and_branch_points(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain
    branches = BranchService(db)
    edit = await branches.create_branch_from_edit(
        conversation.id, CreateBranchRequest(parent_message_id=a1.id, content="edited")
    )

    tree = await branches.get_tree(conversation.id)
    assert tree.root_ids == [u1.id]
    assert tree.active_branch_id == edit.branch_id
    assert tree.active_path == [u1.id, a1.id, edit.message_id]
    assert tree.nodes[a1.id].child_ids == [u2.id, edit.message_id]
    assert tree.nodes[edit.message_id].sibling_index == 1
    assert tree.nodes[edit.message_id].sibling_count == 2
    assert tree.nodes[a2.id].depth == 3
    assert not tree.nodes[a2.id].is_on_active_path

    names = {b.id: b for b in tree.branches}
    assert names["main"].name == "Main"
    assert names["main"].message_ids == [u1.id, a1.id, u2.id, a2.id]
    assert names[edit.branch_id].parent_message_id == a1.id
    assert names[edit.branch_id].is_active

    points = await branches.get_branch_points(conversation.id)
    assert len(points) == 1
    assert points[0].message_id == a1.id
    assert points[0].selected_index == 1
    assert points[0].total_branches == 2


async def test_messages_for_branch_include_ancestors(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain
    branches = BranchService(db)
    edit = await branches.create_branch_from_edit(
        conversation.id, CreateBranchRequest(parent_message_id=a1.id, content="edited")
    )

    messages = await branches.get_messages_for_branch(conversation.id, edit.branch_id)
    assert [m.id for m in messages] == [u1.id, a1.id, edit.message_id]

    messages = await branches.get_messages_for_branch(conversation.id, "main")
    assert [m.id for m in messages] == [u1.id, a1.id, u2.id, a2.id]


async def test_delete_active_message_cuts_path_back_to_parent(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain

    removed = await service.delete_message(u2.id)

    assert set(removed) == {u2.id, a2.id}
    assert await _active_ids(service, conversation.id) == [u1.id, a1.id]
    conversation = await service.require_conversation_row(conversation.id)
    assert conversation.message_count == 2

    reply = await _say(service, conversation.id, "user", "new follow-up")
    assert reply.parent_message_id == a1.id


def test_empty_tree():
    tree = message_tree.build_conversation_tree([])
    assert tree.nodes == {}
    assert tree.active_path == []
    assert message_tree.find_branch_points(tree) == []


# Branch names

async def test_edit_cannot_reuse_main_as_branch_name(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain
    before = await _active_ids(service, conversation.id)

    with pytest.raises(ValueError, match="already exists"):
        await BranchService(db).create_branch_from_edit(
            conversation.id, CreateBranchRequest(parent_message_id=a1.id, content="edited", branch_name="main")
        )

    assert await _active_ids(service, conversation.id) == before
    assert len(await service.load_all_messages(conversation.id)) == 4


async def test_append_naming_main_only_extends_its_tip(chain):
    service, conversation, (u1, a1, u2, a2) = chain

    with pytest.raises(ValueError, match="already exists"):
        await service.create_message(MessageCreate(
            conversation_id=conversation.id, role="user", content="fork", parent_message_id=a1.id, branch_name="main",
        ))

    follow_up = await service.create_message(MessageCreate(
        conversation_id=conversation.id, role="user", content="third question", branch_name="main",
    ))
    assert follow_up.parent_message_id == a2.id
    assert follow_up.branch_name is None
    await assert_single_active_path(service, conversation.id)


async def test_switch_to_main_after_edit_keeps_one_path(db, chain):
    service, conversation, (u1, a1, u2, a2) = chain
    branches = BranchService(db)
    await branches.create_branch_from_edit(
        conversation.id, CreateBranchRequest(parent_message_id=a1.id, content="edited")
    )

    await branches.switch_branch(conversation.id, "main")

    assert await _active_ids(service, conversation.id) == [u1.id, a1.id, u2.id, a2.id]
    await assert_single_active_path(service, conversation.id)


# Storage failures

def _fail_on_update(db, monkeypatch, nth):
    """Make the ``nth`` UPDATE statement executed on ``db`` raise."""
    execute = db.execute
    seen = []

    async def failing_execute(statement, *args, **kwargs):
        if isinstance(statement, Update):
            seen.append(statement)
            if len(seen) == nth:
                raise OperationalError("UPDATE messages", {}, Exception("disk I/O error"))
        return await execute(statement, *args, **kwargs)

    monkeypatch.setattr(db, "execute", failing_execute)


async def test_failed_switch_keeps_previous_active_path(db, chain, monkeypatch):
    service, conversation, (u1, a1, u2, a2) = chain
    branches = BranchService(db)
    edit = await branches.create_branch_from_edit(
        conversation.id, CreateBranchRequest(parent_message_id=a1.id, content="edited")
    )
    before = await _active_ids(service, conversation.id)
    conversation_id = conversation.id
    assert before == [u1.id, a1.id, edit.message_id]

    _fail_on_update(db, monkeypatch, nth=2)
    with pytest.raises(StorageError):
        await branches.switch_branch(conversation_id, "main")
    monkeypatch.undo()

    assert await _active_ids(service, conversation_id) == before
    await assert_single_active_path(service, conversation_id)


async def test_failed_append_is_rolled_back(db, chain, monkeypatch):
    service, conversation, (u1, a1, u2, a2) = chain
    conversation_id = conversation.id
    ids = [m.id for m in (u1, a1, u2, a2)]

    _fail_on_update(db, monkeypatch, nth=1)
    with pytest.raises(StorageError):
        await _say(service, conversation_id, "user", "lost question")
    monkeypatch.undo()

    assert [m.id for m in await service.load_all_messages(conversation_id)] == ids
    conversation = await service.require_conversation_row(conversation_id)
    assert conversation.message_count == 4
    await assert_single_active_path(service, conversation_id)


async def test_failed_delete_is_rolled_back(db, chain, monkeypatch):
    service, conversation, (u1, a1, u2, a2) = chain
    conversation_id = conversation.id
    ids = [m.id for m in (u1, a1, u2, a2)]

    _fail_on_update(db, monkeypatch, nth=1)
    with pytest.raises(StorageError):
        await service.delete_message(u2.id)
    monkeypatch.undo()

    assert await _active_ids(service, conversation_id) == ids
    conversation = await service.require_conversation_row(conversation_id)
    assert conversation.message_count == 4
