from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Iterator, Optional, Tuple, Union


class Difficulty(IntEnum):
    BASIC = 1
    INTERMEDIATE = 2
    MASTER = 3

    @classmethod
    def coerce(cls, value: Union["Difficulty", int, str]) -> "Difficulty":
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ValueError(f"difficulty must be 1, 2 or 3, got {value!r}") from None


@dataclass(frozen=True)
class TreeNode:
    id: str
    text: str
    children: Tuple["TreeNode", ...] = ()
    # Frozen together with children once parsing finishes, so it never goes stale.
    is_leaf: bool = True
    level: int = 0

    def walk(self) -> Iterator["TreeNode"]:
        """Yield this node and every descendant in source (pre-)order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find(self, node_id: str) -> Optional["TreeNode"]:
        for node in self.walk():
            if node.id == node_id:
                return node
        return None

    def count(self) -> int:
        return sum(1 for _ in self.walk())


@dataclass(frozen=True)
class NodeState:
    is_solved: bool = False
    is_starred: bool = False
    is_collapsed: bool = False
    hint_count: int = 0

    DEFAULT: ClassVar["NodeState"]

    def __post_init__(self) -> None:
        if self.hint_count < 0:
            raise ValueError("hint_count must not be negative")


NodeState.DEFAULT = NodeState()
