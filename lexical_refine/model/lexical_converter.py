# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Lexical JSON <-> document tree, and Lexical JSON <-> Loro tree.

The browser editor speaks Lexical's serialized editor state. Text formatting
is a bitmask on text nodes and colours live in the CSS ``style`` string:

    {"type": "text", "text": "Hi", "format": 1, "style": "color: red;"}

Hard line breaks are separate ``linebreak`` nodes in Lexical and the ``"\\n"``
character in the document tree.

LORO SNAPSHOT:
==============

``LexicalTreeConverter`` stores a Lexical state in a Loro tree container so
that Lexical/Loro clients can bootstrap their view from a binary snapshot:

- TreeNode meta {"elementType": "paragraph", "lexical": {...}}
- Children created in order with ``tree.create_at(index, parent_id)``
- Lexical keys (``__key``, ``key``, ``lexicalKey``) are stripped on import and
  regenerated on export, the TreeID serves as identity inside the tree
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from loro import ExportMode, LoroDoc

from ..constants import DEFAULT_TREE_NAME
from ..errors import ParseError
from .nodes import (
    ElementNode,
    NodeKind,
    TextNode,
    generate_node_key,
    iter_text_blocks,
    make_root,
    normalize_block,
    prune_containers,
)

logger = logging.getLogger(__name__)

# Lexical text format flags
IS_BOLD = 1
IS_ITALIC = 1 << 1
IS_STRIKETHROUGH = 1 << 2
IS_UNDERLINE = 1 << 3
IS_CODE = 1 << 4
IS_HIGHLIGHT = 1 << 7

FORMAT_FLAGS = {
    "bold": IS_BOLD,
    "italic": IS_ITALIC,
    "strikethrough": IS_STRIKETHROUGH,
    "underline": IS_UNDERLINE,
    "code": IS_CODE,
}

BLOCK_TYPES = {
    "paragraph": NodeKind.PARAGRAPH,
    "heading": NodeKind.HEADING,
    "quote": NodeKind.QUOTE,
    "code": NodeKind.CODE,
}

KEY_FIELDS = {"__key", "key", "lexicalKey", "children"}


def marks_to_format(marks: Dict[str, Any]) -> int:
    fmt = 0
    for name, flag in FORMAT_FLAGS.items():
        if marks.get(name):
            fmt |= flag
    if marks.get("highlight"):
        fmt |= IS_HIGHLIGHT
    return fmt


def marks_to_style(marks: Dict[str, Any]) -> str:
    parts = []
    if marks.get("color"):
        parts.append(f"color: {marks['color']};")
    if marks.get("highlight"):
        parts.append(f"background-color: {marks['highlight']};")
    return "".join(parts)


def parse_style(style: str) -> Dict[str, str]:
    declarations = {}
    for declaration in (style or "").split(";"):
        name, _, value = declaration.partition(":")
        if name.strip() and value.strip():
            declarations[name.strip().lower()] = value.strip()
    return declarations


def format_to_marks(fmt: int, style: str = "") -> Dict[str, Any]:
    marks: Dict[str, Any] = {name: True for name, flag in FORMAT_FLAGS.items() if fmt & flag}
    declarations = parse_style(style)
    if declarations.get("color"):
        marks["color"] = declarations["color"]
    if declarations.get("background-color"):
        marks["highlight"] = declarations["background-color"]
    elif fmt & IS_HIGHLIGHT:
        marks["highlight"] = "yellow"
    return marks


# Document tree -> Lexical

def _text_nodes(run: TextNode) -> List[Dict[str, Any]]:
    nodes = []
    fmt = marks_to_format(run.marks)
    style = marks_to_style(run.marks)
    for index, segment in enumerate(run.text.split("\n")):
        if index:
            nodes.append({"type": "linebreak", "version": 1})
        if segment:
            nodes.append({
                "__key": run.key if not nodes else generate_node_key(),
                "detail": 0,
                "format": fmt,
                "mode": "normal",
                "style": style,
                "text": segment,
                "type": "text",
                "version": 1,
            })
    return nodes


def _element_base(node: ElementNode, node_type: str) -> Dict[str, Any]:
    return {
        "__key": node.key,
        "children": [],
        "direction": None,
        "format": node.attrs.get("align") or "",
        "indent": 0,
        "type": node_type,
        "version": 1,
    }


def node_to_lexical(node: ElementNode, index: int = 0) -> Dict[str, Any]:
    kind = node.kind
    data = _element_base(node, kind.value)
    if kind == NodeKind.HEADING:
        data["tag"] = f"h{node.attrs.get('level', 1)}"
    elif kind == NodeKind.PARAGRAPH:
        data["textFormat"] = 0
        data["textStyle"] = ""
    elif kind == NodeKind.CODE:
        data["language"] = None
    elif kind == NodeKind.LIST:
        list_type = node.attrs.get("listType", "bullet")
        data["listType"] = list_type
        data["start"] = 1
        data["tag"] = "ol" if list_type == "number" else "ul"
    elif kind == NodeKind.LIST_ITEM:
        data["value"] = index + 1
        data["checked"] = None

    if node.is_text_block:
        for run in node.children:
            data["children"].extend(_text_nodes(run))
    else:
        data["children"] = [node_to_lexical(child, i) for i, child in enumerate(node.children)]
    return data


def to_lexical_state(root: ElementNode) -> Dict[str, Any]:
    """Serialize a document root as a Lexical editor state"""
    lexical_root = node_to_lexical(root)
    lexical_root.pop("__key", None)
    return {"root": lexical_root}


# Lexical -> document tree

def _inline_runs(lexical_node: Dict[str, Any], runs: List[TextNode]) -> None:
    node_type = lexical_node.get("type")
    if node_type in ("text", "code-highlight"):
        marks = format_to_marks(int(lexical_node.get("format") or 0), lexical_node.get("style") or "")
        key = lexical_node.get("__key") or generate_node_key()
        runs.append(TextNode(str(lexical_node.get("text", "")), marks, key))
    elif node_type == "linebreak":
        runs.append(TextNode("\n"))
    elif node_type == "tab":
        runs.append(TextNode("\t"))
    else:
        # link, autolink, mark and other inline wrappers
        for child in lexical_node.get("children") or []:
            if isinstance(child, dict):
                _inline_runs(child, runs)


def _block_attrs(lexical_node: Dict[str, Any]) -> Dict[str, Any]:
    align = lexical_node.get("format")
    if isinstance(align, str) and align in ("left", "center", "right", "justify"):
        return {"align": align}
    return {}


def _key_of(lexical_node: Dict[str, Any]) -> str:
    return lexical_node.get("__key") or generate_node_key()


def _text_block(lexical_node: Dict[str, Any], kind: NodeKind, attrs: Dict[str, Any]) -> ElementNode:
    runs: List[TextNode] = []
    for child in lexical_node.get("children") or []:
        if isinstance(child, dict):
            _inline_runs(child, runs)
    return ElementNode(kind, runs, attrs, _key_of(lexical_node))


def _list_items(lexical_list: Dict[str, Any], items: List[ElementNode]) -> None:
    for child in lexical_list.get("children") or []:
        if not isinstance(child, dict):
            continue
        nested = [c for c in child.get("children") or [] if isinstance(c, dict) and c.get("type") == "list"]
        inline = dict(child, children=[c for c in child.get("children") or [] if c not in nested])
        if inline["children"] or not nested:
            items.append(_text_block(inline, NodeKind.LIST_ITEM, _block_attrs(child)))
        for sublist in nested:
            _list_items(sublist, items)


def lexical_to_node(lexical_node: Dict[str, Any]) -> List[ElementNode]:
    """Convert one top-level Lexical block into document blocks"""
    node_type = lexical_node.get("type")
    attrs = _block_attrs(lexical_node)
    if node_type == "heading":
        tag = str(lexical_node.get("tag") or "h1")
        try:
            level = min(max(int(tag[1:]), 1), 6)
        except ValueError:
            level = 1
        return [_text_block(lexical_node, NodeKind.HEADING, {"level": level, **attrs})]
    if node_type == "list":
        list_type = "number" if lexical_node.get("listType") == "number" else "bullet"
        items: List[ElementNode] = []
        _list_items(lexical_node, items)
        return [ElementNode(NodeKind.LIST, items, {"listType": list_type}, _key_of(lexical_node))]
    if node_type == "listitem":
        return [_text_block(lexical_node, NodeKind.PARAGRAPH, attrs)]
    if node_type in BLOCK_TYPES:
        if node_type == "code":
            attrs = {}
        return [_text_block(lexical_node, BLOCK_TYPES[node_type], attrs)]
    logger.debug(f"Unknown Lexical block type '{node_type}', importing as paragraph")
    return [_text_block(lexical_node, NodeKind.PARAGRAPH, attrs)]


def from_lexical_state(lexical_state: Union[str, Dict[str, Any]]) -> ElementNode:
    """
    Build a document root from a Lexical editor state

    Args:
        lexical_state: Lexical state as JSON string or dict

    Returns:
        Root element node

    Raises:
        ParseError: If the state is not valid Lexical JSON
    """
    if isinstance(lexical_state, str):
        try:
            lexical_state = json.loads(lexical_state)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON format: {e}")
    if not isinstance(lexical_state, dict) or not isinstance(lexical_state.get("root"), dict):
        raise ParseError("Lexical state must contain a 'root' object")
    lexical_root = lexical_state["root"]
    children = lexical_root.get("children") or []
    if not isinstance(children, list):
        raise ParseError("Lexical root children must be a list")

    blocks: List[ElementNode] = []
    for child in children:
        if isinstance(child, dict) and "type" in child:
            blocks.extend(lexical_to_node(child))
    root = make_root(blocks)
    for block, _ in iter_text_blocks(root):
        normalize_block(block)
    prune_containers(root)
    return root


# Lexical <-> Loro tree

def _unwrap(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


class LexicalTreeConverter:
    """
    Converts between Lexical JSON state and a Loro tree container
    """

    def __init__(self, doc: Optional[LoroDoc] = None, tree_name: str = DEFAULT_TREE_NAME):
        """
        Args:
            doc: Loro document (a new one is created when omitted)
            tree_name: Name of the tree container
        """
        self.doc = doc if doc is not None else LoroDoc()
        self.tree_name = tree_name
        self.tree = self.doc.get_tree(tree_name)
        self.tree.enable_fractional_index(1)

    def import_from_lexical_state(self, lexical_state: Dict[str, Any]) -> str:
        """
        Store a Lexical state in the tree and commit

        Returns:
            Root tree node ID as string
        """
        if not isinstance(lexical_state, dict) or "root" not in lexical_state:
            raise ParseError("Lexical state must contain 'root' property")
        root_id = self.tree.create()
        self._process_lexical_node(lexical_state["root"], root_id)
        self.doc.commit()
        logger.debug(f"Imported Lexical state to tree '{self.tree_name}' with root ID: {root_id}")
        return str(root_id)

    def export_to_lexical_state(self) -> Dict[str, Any]:
        roots = list(self.tree.roots)
        if not roots:
            raise ValueError("Tree is empty")
        lexical_root = self._export_tree_node(roots[0])
        lexical_root.pop("__key", None)
        return {"root": lexical_root}

    def _process_lexical_node(self, lexical_node: Dict[str, Any], tree_id) -> None:
        meta = self.tree.get_meta(tree_id)
        meta.insert("elementType", lexical_node.get("type", ""))
        meta.insert("lexical", {k: v for k, v in lexical_node.items() if k not in KEY_FIELDS})
        for index, child in enumerate(lexical_node.get("children") or []):
            if isinstance(child, dict) and "type" in child:
                child_id = self.tree.create_at(index, tree_id)
                self._process_lexical_node(child, child_id)

    def _export_tree_node(self, tree_id) -> Dict[str, Any]:
        meta = self.tree.get_meta(tree_id)
        element_type = _unwrap(meta.get("elementType"))
        if element_type is None:
            logger.warning(f"Node {tree_id} missing elementType, using 'unknown'")
            element_type = "unknown"
        lexical_data = _unwrap(meta.get("lexical"))
        if not isinstance(lexical_data, dict):
            lexical_data = {}

        result = {"type": element_type, **lexical_data, "__key": generate_node_key()}
        child_ids = self.tree.children(tree_id) or []
        children = [self._export_tree_node(child_id) for child_id in child_ids]
        if children or element_type not in ("text", "linebreak", "tab"):
            result["children"] = children
        return result

    def export_snapshot(self) -> bytes:
        return self.doc.export(ExportMode.Snapshot())

    @classmethod
    def from_snapshot(cls, snapshot: bytes, tree_name: str = DEFAULT_TREE_NAME) -> "LexicalTreeConverter":
        doc = LoroDoc()
        doc.import_(snapshot)
        return cls(doc, tree_name)
