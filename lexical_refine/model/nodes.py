# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Node types of the rich-text document tree.

TREE SHAPE:
===========

root
├── paragraph / heading / quote / code      (text blocks)
│   └── text, text, ...                      (runs with marks)
└── list
    └── listitem                             (text block)
        └── text, ...

Text blocks only ever hold text runs and containers (root, list) only ever
hold blocks. Hard line breaks are stored as "\\n" inside a run.
"""

import random
import string
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union


class NodeKind(Enum):
    """Structural node kinds"""
    ROOT = "root"
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    QUOTE = "quote"
    CODE = "code"
    LIST = "list"
    LIST_ITEM = "listitem"
    TEXT = "text"


TEXT_BLOCK_KINDS = frozenset({
    NodeKind.PARAGRAPH,
    NodeKind.HEADING,
    NodeKind.QUOTE,
    NodeKind.CODE,
    NodeKind.LIST_ITEM,
})

CONTAINER_KINDS = frozenset({NodeKind.ROOT, NodeKind.LIST})

BOOLEAN_MARKS = ("bold", "italic", "underline", "strikethrough", "code")
VALUE_MARKS = ("color", "highlight")
MARK_NAMES = BOOLEAN_MARKS + VALUE_MARKS

ALIGNMENTS = ("left", "center", "right", "justify")
LIST_TYPES = ("bullet", "number")


def generate_node_key() -> str:
    """Generate a node key similar to Lexical's"""
    return ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))


def normalize_marks(marks: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop unknown marks and unset values so equal formatting compares equal"""
    if not marks:
        return {}
    cleaned = {}
    for name in BOOLEAN_MARKS:
        if marks.get(name):
            cleaned[name] = True
    for name in VALUE_MARKS:
        value = marks.get(name)
        if value:
            cleaned[name] = str(value)
    return cleaned


@dataclass
class TextNode:
    """A run of text sharing one set of marks"""
    text: str
    marks: Dict[str, Any] = field(default_factory=dict)
    key: str = field(default_factory=generate_node_key)

    def __post_init__(self):
        self.marks = normalize_marks(self.marks)

    @property
    def kind(self) -> NodeKind:
        return NodeKind.TEXT

    def has_same_marks(self, other: "TextNode") -> bool:
        return self.marks == other.marks


@dataclass
class ElementNode:
    """A block or container node"""
    kind: NodeKind
    children: List["Node"] = field(default_factory=list)
    attrs: Dict[str, Any] = field(default_factory=dict)
    key: str = field(default_factory=generate_node_key)

    @property
    def is_text_block(self) -> bool:
        return self.kind in TEXT_BLOCK_KINDS

    @property
    def is_container(self) -> bool:
        return self.kind in CONTAINER_KINDS


Node = Union[TextNode, ElementNode]


def make_root(children: Optional[List[ElementNode]] = None) -> ElementNode:
    return ElementNode(NodeKind.ROOT, list(children or []))


def make_paragraph(text: str = "", marks: Optional[Dict[str, Any]] = None,
                   align: Optional[str] = None) -> ElementNode:
    children = [TextNode(text, marks or {})] if text else []
    attrs = {"align": align} if align else {}
    return ElementNode(NodeKind.PARAGRAPH, children, attrs)


def make_heading(level: int, text: str = "") -> ElementNode:
    children = [TextNode(text)] if text else []
    return ElementNode(NodeKind.HEADING, children, {"level": level})


def node_text_length(node: Node) -> int:
    if isinstance(node, TextNode):
        return len(node.text)
    return sum(node_text_length(child) for child in node.children)


def node_text(node: Node) -> str:
    if isinstance(node, TextNode):
        return node.text
    return "".join(node_text(child) for child in node.children)


def iter_nodes(node: Node) -> Iterator[Node]:
    """Pre-order traversal"""
    yield node
    if isinstance(node, ElementNode):
        for child in node.children:
            yield from iter_nodes(child)


def iter_text_blocks(node: ElementNode, parent: Optional[ElementNode] = None
                     ) -> Iterator[Tuple[ElementNode, ElementNode]]:
    """Yield ``(block, parent)`` for every text block in document order"""
    for child in node.children:
        if not isinstance(child, ElementNode):
            continue
        if child.is_text_block:
            yield child, node
        else:
            yield from iter_text_blocks(child, node)


def find_node(root: ElementNode, key: str) -> Optional[Node]:
    for node in iter_nodes(root):
        if node.key == key:
            return node
    return None


def normalize_inlines(children: List[TextNode], strip_code: bool = False) -> List[TextNode]:
    """Drop empty runs and merge neighbours with identical marks"""
    merged: List[TextNode] = []
    for child in children:
        if strip_code and child.marks.get("code"):
            child.marks = {k: v for k, v in child.marks.items() if k != "code"}
        if not child.text:
            continue
        if merged and merged[-1].has_same_marks(child):
            merged[-1].text += child.text
        else:
            merged.append(child)
    return merged


def normalize_block(block: ElementNode) -> ElementNode:
    block.children = normalize_inlines(block.children, strip_code=block.kind == NodeKind.CODE)
    return block


def prune_containers(node: ElementNode) -> None:
    """Remove lists left without items after an edit (the root is kept)"""
    kept = []
    for child in node.children:
        if isinstance(child, ElementNode) and child.kind == NodeKind.LIST:
            prune_containers(child)
            if not child.children:
                continue
        kept.append(child)
    node.children = kept


def ensure_block(root: ElementNode) -> ElementNode:
    """A document always has at least one text block to put the caret in"""
    if not any(True for _ in iter_text_blocks(root)):
        root.children.append(make_paragraph())
    return root


def node_signature(node: Node) -> Tuple:
    """Key-free structural fingerprint used for equivalence checks"""
    if isinstance(node, TextNode):
        return ("text", node.text, tuple(sorted(node.marks.items())))
    attrs = tuple(sorted((k, v) for k, v in node.attrs.items() if v is not None))
    return (node.kind.value, attrs, tuple(node_signature(child) for child in node.children))
