"""
Pure helpers over a conversation's message tree.

Messages are linked by ``parent_message_id``. Functions here take the full
list of a conversation's messages (ordered by ``position``) and never touch
the database.
"""

from typing import Dict, Iterable, List, Optional, Sequence

from ..models.message import Message
from ..schemas.branching import (
    MAIN_BRANCH,
    BranchNode,
    BranchPoint,
    ConversationBranchInfo,
    ConversationTree,
)


def branch_id_of(message: Message) -> str:
    return message.branch_name or MAIN_BRANCH


def branch_display_name(branch_id: str) -> str:
    return "Main" if branch_id == MAIN_BRANCH else branch_id


def children_map(messages: Sequence[Message]) -> Dict[Optional[str], List[Message]]:
    """Map parent id (None for roots) to its children in insertion order."""
    by_id = {m.id: m for m in messages}
    children: Dict[Optional[str], List[Message]] = {None: []}
    for message in messages:
        children.setdefault(message.id, [])
    for message in messages:
        parent_id = message.parent_message_id
        # orphaned parent pointers are treated as roots
        if parent_id is not None and parent_id not in by_id:
            parent_id = None
        children[parent_id].append(message)
    return children


def path_to_root(by_id: Dict[str, Message], message_id: str) -> List[str]:
    """Ids from the root down to ``message_id`` (inclusive)."""
    path = []
    seen = set()
    current = by_id.get(message_id)
    while current is not None and current.id not in seen:
        seen.add(current.id)
        path.append(current.id)
        current = by_id.get(current.parent_message_id) if current.parent_message_id else None
    path.reverse()
    return path


def active_leaf(messages: Sequence[Message]) -> Optional[Message]:
    """Deepest active message: the end of the visible path."""
    active = [m for m in messages if m.is_active_branch]
    if not active:
        return None
    by_id = {m.id: m for m in messages}
    return max(active, key=lambda m: (len(path_to_root(by_id, m.id)), m.position))


def descend_to_leaf(messages: Sequence[Message], start: Message, prefer_branch: Optional[str] = None) -> List[str]:
    """
    Walk down from ``start`` to a leaf and return the ids visited (``start`` first).

    At each step the child on ``prefer_branch`` wins, then an already active
    child, then the newest child.
    """
    children = children_map(messages)
    path = [start.id]
    current = start
    while children.get(current.id):
        kids = children[current.id]
        chosen = None
        if prefer_branch is not None:
            chosen = next((k for k in kids if branch_id_of(k) == prefer_branch), None)
        if chosen is None:
            chosen = next((k for k in kids if k.is_active_branch), None)
        if chosen is None:
            chosen = kids[-1]
        path.append(chosen.id)
        current = chosen
    return path


def subtree_ids(messages: Sequence[Message], message_id: str) -> List[str]:
    children = children_map(messages)
    ids = []
    stack = [message_id]
    while stack:
        current = stack.pop()
        ids.append(current)
        stack.extend(child.id for child in children.get(current, []))
    return ids


def build_conversation_tree(messages: Sequence[Message]) -> ConversationTree:
    """Build the navigable tree view of a conversation."""
    if not messages:
        return ConversationTree()

    by_id = {m.id: m for m in messages}
    children = children_map(messages)
    leaf = active_leaf(messages)
    active_path = path_to_root(by_id, leaf.id) if leaf else []
    on_path = set(active_path)

    nodes: Dict[str, BranchNode] = {}
    stack = [(root, 0) for root in reversed(children[None])]
    while stack:
        message, depth = stack.pop()
        siblings = children[message.parent_message_id if message.parent_message_id in by_id else None]
        nodes[message.id] = BranchNode(
            id=message.id,
            parent_id=message.parent_message_id if message.parent_message_id in by_id else None,
            child_ids=[c.id for c in children[message.id]],
            branch_id=branch_id_of(message),
            depth=depth,
            sibling_index=siblings.index(message),
            sibling_count=len(siblings),
            is_on_active_path=message.id in on_path,
        )
        stack.extend((child, depth + 1) for child in reversed(children[message.id]))

    active_branch_id = branch_id_of(leaf) if leaf else MAIN_BRANCH

    branches: Dict[str, ConversationBranchInfo] = {}
    for message in messages:
        bid = branch_id_of(message)
        branch = branches.get(bid)
        if branch is None:
            parent_id = message.parent_message_id if message.parent_message_id in by_id else None
            branch = ConversationBranchInfo(
                id=bid,
                name=branch_display_name(bid),
                parent_message_id=parent_id,
                is_active=bid == active_branch_id,
                created_at=message.created_at,
            )
            branches[bid] = branch
        branch.message_ids.append(message.id)

    return ConversationTree(
        nodes=nodes,
        root_ids=[m.id for m in children[None]],
        branches=list(branches.values()),
        active_branch_id=active_branch_id,
        active_path=active_path,
    )


def find_branch_points(tree: ConversationTree) -> List[BranchPoint]:
    """Messages that have more than one child, in tree order."""
    points = []
    for node in _walk(tree):
        if len(node.child_ids) <= 1:
            continue
        selected = next(
            (i for i, cid in enumerate(node.child_ids) if tree.nodes[cid].is_on_active_path),
            0,
        )
        points.append(BranchPoint(
            message_id=node.id,
            child_branch_ids=list(node.child_ids),
            selected_index=selected,
            total_branches=len(node.child_ids),
        ))
    return points


def _walk(tree: ConversationTree) -> Iterable[BranchNode]:
    stack = list(reversed(tree.root_ids))
    while stack:
        node = tree.nodes[stack.pop()]
        yield node
        stack.extend(reversed(node.child_ids))
