"""Masking rules and the per-node recall state overlay.

The tree itself never changes after parsing. Everything the learner does to
a node (solving, starring, collapsing, asking for hints) lives in a plain
``dict`` keyed by node id. Missing entries mean "default state". Every
operation here returns a new mapping and leaves its input untouched.
"""

import re
from dataclasses import replace
from typing import Dict, Mapping, Tuple

from node_models import Difficulty, NodeState, TreeNode


StateMap = Mapping[str, NodeState]

MISMATCH_FLASH_SECONDS = 0.5

_WHITESPACE_RUN = re.compile(r"\s+")


def should_mask(node: TreeNode, difficulty: Difficulty) -> bool:
    if node.level == 0:
        return False
    if difficulty == Difficulty.BASIC:
        return node.is_leaf
    if difficulty == Difficulty.INTERMEDIATE:
        return node.is_leaf or any(child.is_leaf for child in node.children)
    if difficulty == Difficulty.MASTER:
        return True
    return False


def get_state(store: StateMap, node_id: str) -> NodeState:
    return store.get(node_id, NodeState.DEFAULT)


def is_hidden(node: TreeNode, difficulty: Difficulty, store: StateMap) -> bool:
    """True while the node is subject to masking and not yet recalled."""
    return should_mask(node, difficulty) and not get_state(store, node.id).is_solved


def apply_update(store: StateMap, node_id: str, **changes) -> Dict[str, NodeState]:
    """Merge ``changes`` into one node's state, copy-on-write.

    Unknown field names raise ``TypeError`` (from ``dataclasses.replace``).
    Use :func:`reset_states` to forget everything; an empty id is refused.
    """
    if not node_id:
        raise ValueError("node_id must be a non-empty string")
    merged = replace(get_state(store, node_id), **changes)
    updated = dict(store)
    updated[node_id] = merged
    return updated


def reset_states() -> Dict[str, NodeState]:
    return {}


def normalize_answer(text: str) -> str:
    return _WHITESPACE_RUN.sub("", text or "").lower()


def answers_match(guess: str, label: str) -> bool:
    return normalize_answer(guess) == normalize_answer(label)


def check_answer(
    store: StateMap, node: TreeNode, guess: str
) -> Tuple[StateMap, bool]:
    """Mark ``node`` solved when ``guess`` matches its label.

    A wrong guess returns the very same mapping together with ``False``;
    showing the mismatch is up to the caller.
    """
    if answers_match(guess, node.text):
        return apply_update(store, node.id, is_solved=True), True
    return store, False


def request_hint(store: StateMap, node_id: str) -> Dict[str, NodeState]:
    current = get_state(store, node_id)
    return apply_update(store, node_id, hint_count=current.hint_count + 1)


def hint_text(label: str, hint_count: int) -> str:
    """Prefix of ``label`` revealed after ``hint_count`` hints."""
    if hint_count <= 0:
        return ""
    if hint_count == 1:
        return label[:1]
    if hint_count == 2:
        return label[: min(3, len(label))]
    return label


def toggle_star(store: StateMap, node_id: str) -> Dict[str, NodeState]:
    current = get_state(store, node_id)
    return apply_update(store, node_id, is_starred=not current.is_starred)


def toggle_collapse(store: StateMap, node: TreeNode) -> StateMap:
    # Leaves have nothing to fold.
    if not node.children:
        return store
    current = get_state(store, node.id)
    return apply_update(store, node.id, is_collapsed=not current.is_collapsed)


def set_all_collapsed(
    store: StateMap, root: TreeNode, collapsed: bool
) -> Dict[str, NodeState]:
    updated = dict(store)
    for node in root.walk():
        updated[node.id] = replace(get_state(store, node.id), is_collapsed=collapsed)
    return updated


def has_starred_descendant(node: TreeNode, store: StateMap) -> bool:
    """True when ``node`` or anything below it is starred."""
    if get_state(store, node.id).is_starred:
        return True
    return any(has_starred_descendant(child, store) for child in node.children)
