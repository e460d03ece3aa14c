import math

from node_models import Difficulty, TreeNode
from recall import StateMap, should_mask


def count_required(node: TreeNode, difficulty: Difficulty) -> int:
    count = 1 if should_mask(node, difficulty) else 0
    for child in node.children:
        count += count_required(child, difficulty)
    return count


def count_solved(store: StateMap) -> int:
    # Counts every solved entry, including ones no longer masked at this level.
    return sum(1 for state in store.values() if state.is_solved)


def compute_progress(tree: TreeNode, difficulty: Difficulty, store: StateMap) -> int:
    """Percentage of required nodes solved, rounded half-up into 0..100."""
    required = max(1, count_required(tree, difficulty))
    ratio = count_solved(store) / required * 100
    return max(0, min(100, math.floor(ratio + 0.5)))
