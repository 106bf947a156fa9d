# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Formatting commands over an offset range.

Mark commands change the marks of the runs inside ``[start, end)``; block
commands change the kind or attributes of every text block the range touches
(a collapsed range touches the block holding the caret).

    bold | italic | underline | strikethrough | code    toggle a mark
    color | highlight (value or None)                    set or clear a mark
    clearMarks                                           drop every mark
    paragraph | heading (level) | quote | codeBlock      change block kind
    bulletList | orderedList                             toggle list membership
    align (left|center|right|justify or None)            block alignment
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from ..errors import InvalidCommandError
from .nodes import (
    ALIGNMENTS,
    BOOLEAN_MARKS,
    ElementNode,
    NodeKind,
    TextNode,
    generate_node_key,
    normalize_block,
    normalize_marks,
)
from .offsets import BlockSpan, block_spans, blocks_in_range, split_inlines

logger = logging.getLogger(__name__)

VALUE_COMMANDS = ("color", "highlight")
BLOCK_COMMANDS = ("paragraph", "heading", "quote", "codeBlock")
LIST_COMMANDS = {"bulletList": "bullet", "orderedList": "number"}
COMMAND_NAMES = BOOLEAN_MARKS + VALUE_COMMANDS + ("clearMarks",) + BLOCK_COMMANDS + tuple(LIST_COMMANDS) + ("align",)

# Hex, named colours and rgb/rgba/hsl/hsla functions
CSS_COLOR_PATTERN = re.compile(
    r"^(#[0-9a-fA-F]{3,8}|[a-zA-Z]+|(rgb|rgba|hsl|hsla)\(\s*[0-9a-zA-Z.%,\s/+-]*\))$"
)


@dataclass
class FormatCommand:
    """A toolbar command with its optional value"""
    name: str
    value: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormatCommand":
        name = data.get("name") or data.get("command")
        if not name:
            raise InvalidCommandError("Formatting command requires a name")
        return cls(str(name), data.get("value"))

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.value}

    def validate(self) -> None:
        """
        Raises:
            InvalidCommandError: If the name is unknown or the value is unusable
        """
        if self.name not in COMMAND_NAMES:
            raise InvalidCommandError(f"Unknown formatting command: {self.name}")
        if self.name == "heading":
            try:
                level = int(self.value)
            except (TypeError, ValueError):
                raise InvalidCommandError(f"Heading level must be an integer, got {self.value!r}")
            if not 1 <= level <= 6:
                raise InvalidCommandError(f"Heading level must be between 1 and 6, got {level}")
        if self.name == "align" and self.value not in ALIGNMENTS + (None, ""):
            raise InvalidCommandError(f"Unsupported alignment: {self.value}")
        if self.name in VALUE_COMMANDS and self.value not in (None, ""):
            if not isinstance(self.value, str) or not CSS_COLOR_PATTERN.match(self.value.strip()):
                raise InvalidCommandError(f"{self.name} value must be a CSS colour, got {self.value!r}")

    @property
    def is_mark_command(self) -> bool:
        return self.name in BOOLEAN_MARKS or self.name in VALUE_COMMANDS or self.name == "clearMarks"


def selected_runs(root: ElementNode, start: int, end: int) -> List[TextNode]:
    """Copies of the runs (or run pieces) covered by ``[start, end)``"""
    runs: List[TextNode] = []
    for span in block_spans(root):
        if span.end <= start or span.start >= end:
            continue
        local_start = max(start, span.start) - span.start
        local_end = min(end, span.end) - span.start
        _, rest = split_inlines(span.block.children, local_start)
        middle, _ = split_inlines(rest, local_end - local_start)
        runs.extend(middle)
    return runs


def _map_marks(root: ElementNode, start: int, end: int,
               update: Callable[[Dict[str, Any]], Dict[str, Any]]) -> None:
    for span in block_spans(root):
        if span.end <= start or span.start >= end:
            continue
        local_start = max(start, span.start) - span.start
        local_end = min(end, span.end) - span.start
        left, rest = split_inlines(span.block.children, local_start)
        middle, right = split_inlines(rest, local_end - local_start)
        for run in middle:
            run.marks = normalize_marks(update(dict(run.marks)))
        span.block.children = left + middle + right
        normalize_block(span.block)


def _apply_mark_command(root: ElementNode, start: int, end: int, command: FormatCommand) -> None:
    if start == end:
        return
    name = command.name
    if name == "clearMarks":
        _map_marks(root, start, end, lambda marks: {})
        return
    if name in VALUE_COMMANDS:
        value = (command.value or "").strip() or None

        def set_value(marks):
            marks[name] = value
            return marks

        _map_marks(root, start, end, set_value)
        return

    runs = selected_runs(root, start, end)
    enable = not runs or not all(run.marks.get(name) for run in runs)

    def toggle(marks):
        marks[name] = enable
        return marks

    _map_marks(root, start, end, toggle)


def _retyped(block: ElementNode, kind: NodeKind, level: Optional[int] = None) -> ElementNode:
    attrs: Dict[str, Any] = {}
    if kind != NodeKind.CODE and block.attrs.get("align"):
        attrs["align"] = block.attrs["align"]
    if kind == NodeKind.HEADING:
        attrs["level"] = level or 1
    return normalize_block(ElementNode(kind, block.children, attrs, block.key))


def _rebuild(root: ElementNode, targets: Set[int], convert: Callable[[ElementNode], ElementNode]) -> None:
    """Convert target blocks in place, lifting list items out of their list"""
    children = []
    for child in root.children:
        if child.kind != NodeKind.LIST:
            children.append(convert(child) if id(child) in targets else child)
            continue
        if not any(id(item) in targets for item in child.children):
            children.append(child)
            continue
        segment: List[ElementNode] = []
        key = child.key
        for item in child.children:
            if id(item) not in targets:
                segment.append(item)
                continue
            if segment:
                children.append(ElementNode(NodeKind.LIST, segment, dict(child.attrs), key))
                key = generate_node_key()
                segment = []
            children.append(convert(item))
        if segment:
            children.append(ElementNode(NodeKind.LIST, segment, dict(child.attrs), key))
    root.children = children


def _apply_block_command(root: ElementNode, spans: List[BlockSpan], command: FormatCommand) -> None:
    name = command.name
    targets = {id(span.block) for span in spans}
    if name == "paragraph":
        kind, level = NodeKind.PARAGRAPH, None
    elif name == "heading":
        kind, level = NodeKind.HEADING, int(command.value)
    elif name == "quote":
        kind, level = NodeKind.QUOTE, None
    else:
        kind, level = NodeKind.CODE, None

    already = all(
        span.block.kind == kind and (level is None or span.block.attrs.get("level") == level)
        for span in spans
    )
    if already and kind != NodeKind.PARAGRAPH:
        kind, level = NodeKind.PARAGRAPH, None
    _rebuild(root, targets, lambda block: _retyped(block, kind, level))


def _apply_list_command(root: ElementNode, spans: List[BlockSpan], list_type: str) -> None:
    targets = {id(span.block) for span in spans}
    if all(span.parent.kind == NodeKind.LIST and span.parent.attrs.get("listType") == list_type
           for span in spans):
        _rebuild(root, targets, lambda block: _retyped(block, NodeKind.PARAGRAPH))
        return

    children: List[ElementNode] = []
    pending: List[ElementNode] = []

    def flush():
        if pending:
            children.append(ElementNode(NodeKind.LIST, list(pending), {"listType": list_type}))
            pending.clear()

    for child in root.children:
        if child.kind == NodeKind.LIST:
            flush()
            if any(id(item) in targets for item in child.children):
                child.attrs["listType"] = list_type
            children.append(child)
        elif id(child) in targets:
            pending.append(_retyped(child, NodeKind.LIST_ITEM))
        else:
            flush()
            children.append(child)
    flush()
    root.children = children


def _apply_align(spans: List[BlockSpan], value: Optional[str]) -> None:
    for span in spans:
        if span.block.kind == NodeKind.CODE:
            continue
        if value:
            span.block.attrs["align"] = value
        else:
            span.block.attrs.pop("align", None)


def apply_format(root: ElementNode, start: int, end: int, command: FormatCommand) -> None:
    """
    Apply ``command`` to ``root`` over ``[start, end)``, mutating ``root``

    The range must already be validated against the tree.
    """
    command.validate()
    if command.is_mark_command:
        _apply_mark_command(root, start, end, command)
        return
    spans = blocks_in_range(block_spans(root), start, end)
    if command.name in LIST_COMMANDS:
        _apply_list_command(root, spans, LIST_COMMANDS[command.name])
    elif command.name == "align":
        _apply_align(spans, command.value or None)
    else:
        _apply_block_command(root, spans, command)
    logger.debug(f"Applied {command.name} to {len(spans)} block(s)")
