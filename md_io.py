import re
import uuid
from typing import Callable, List, Optional, Set, Tuple

from node_models import TreeNode


EMPTY_TREE_ID = "root"
EMPTY_TREE_TEXT = "Empty Tree"

_INDENT_PATTERN = re.compile(r"^(\s*)")
_BULLET_PREFIX = re.compile(r"^[-*+]\s*")
_HEADING_PREFIX = re.compile(r"^#+\s*")


class _DraftNode:
    """Mutable stand-in used while the indentation stack is still open."""

    __slots__ = ("id", "text", "level", "children")

    def __init__(self, node_id: str, text: str, level: int) -> None:
        self.id = node_id
        self.text = text
        self.level = level
        self.children: List["_DraftNode"] = []

    def freeze(self) -> TreeNode:
        children = tuple(child.freeze() for child in self.children)
        return TreeNode(
            id=self.id,
            text=self.text,
            children=children,
            is_leaf=not children,
            level=self.level,
        )


def _random_id() -> str:
    return uuid.uuid4().hex[:9]


def _indent_width(line: str) -> int:
    match = _INDENT_PATTERN.match(line)
    return len(match.group(1)) if match else 0


def clean_label(line: str) -> str:
    """Trim a line and drop one list marker and any heading hashes."""
    text = _BULLET_PREFIX.sub("", line.strip(), count=1)
    text = _HEADING_PREFIX.sub("", text, count=1)
    return text.strip()


def parse_outline(
    text: str, *, id_factory: Optional[Callable[[], str]] = None
) -> TreeNode:
    """Parse an indented or Markdown bullet outline into a tree.

    - Blank lines are separators only.
    - The first non-blank line is the root, whatever its indentation.
    - A later line closes every open entry indented at least as deep as
      itself, then becomes the last child of whatever remains open.
      Equal indentation therefore always means "sibling".
    - A line dedented below the root is attached to the root at level 1.
    """
    lines = [line for line in text.split("\n") if line.strip()]
    if not lines:
        return TreeNode(id=EMPTY_TREE_ID, text=EMPTY_TREE_TEXT)

    make_id = id_factory or _random_id
    seen: Set[str] = set()

    def next_id() -> str:
        node_id = make_id()
        while node_id in seen:
            node_id = make_id()
        seen.add(node_id)
        return node_id

    root: Optional[_DraftNode] = None
    stack: List[Tuple[int, _DraftNode]] = []

    for line in lines:
        indent = _indent_width(line)
        node = _DraftNode(next_id(), clean_label(line), level=0)

        if root is None:
            root = node
            stack.append((indent, node))
            continue

        while stack and stack[-1][0] >= indent:
            stack.pop()

        parent = stack[-1][1] if stack else root
        parent.children.append(node)
        node.level = parent.level + 1
        stack.append((indent, node))

    return root.freeze()


def to_outline(root: TreeNode) -> str:
    """Render a tree as a Markdown outline that parses back to the same shape.

    The root becomes a ``#`` heading; descendants are ``-`` bullets indented
    two spaces per level.
    """
    if root is None:
        raise ValueError("root node must not be None")

    lines: List[str] = [f"# {root.text}".rstrip()]

    def write_children(parent: TreeNode, depth: int) -> None:
        indent = "  " * depth
        for child in parent.children:
            lines.append(f"{indent}- {child.text}".rstrip())
            write_children(child, depth + 1)

    write_children(root, 1)
    return "\n".join(lines) + "\n"
