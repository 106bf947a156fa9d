# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Logical offset space of a document tree.

Offsets count the characters of text runs in document order. Block boundaries
consume no positions, so the end of one block and the start of the next share
an offset. Callers disambiguate with a bias:

- FORWARD resolves a boundary to the block that starts there (used for the
  start of a range and for collapsed insertion points)
- BACKWARD resolves it to the block that ends there (used for the end of a
  non-empty range)
"""

import copy
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .nodes import ElementNode, TextNode, iter_text_blocks, node_text, node_text_length, prune_containers

FORWARD = "forward"
BACKWARD = "backward"


@dataclass
class BlockSpan:
    """A text block with its parent and ``[start, end)`` offsets"""
    block: ElementNode
    parent: ElementNode
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


def block_spans(root: ElementNode) -> List[BlockSpan]:
    spans = []
    position = 0
    for block, parent in iter_text_blocks(root):
        length = node_text_length(block)
        spans.append(BlockSpan(block, parent, position, position + length))
        position += length
    return spans


def text_length(root: ElementNode) -> int:
    return node_text_length(root)


def text_between(root: ElementNode, start: int, end: int, block_separator: str = "") -> str:
    """
    Text covered by ``[start, end)``

    Args:
        root: Document root
        start: Start offset
        end: End offset
        block_separator: Joined between blocks touched by the range. It is
            display-only and does not correspond to any offset.
    """
    if start >= end:
        return ""
    parts = []
    for span in block_spans(root):
        overlaps = span.start < end and span.end > start
        empty_inside = span.length == 0 and start < span.start < end
        if not (overlaps or empty_inside):
            continue
        local_start = max(start, span.start) - span.start
        local_end = min(end, span.end) - span.start
        parts.append(node_text(span.block)[local_start:local_end])
    return block_separator.join(parts)


def locate(spans: List[BlockSpan], offset: int, bias: str = FORWARD) -> BlockSpan:
    """Resolve an offset to the text block that owns it"""
    if not spans:
        raise ValueError("Document has no text blocks")
    if bias == FORWARD:
        for span in spans:
            if span.start <= offset < span.end:
                return span
        # At the very end (or inside trailing empty blocks) the last block owns it
        for span in reversed(spans):
            if span.start <= offset <= span.end:
                return span
    else:
        for span in spans:
            if span.start < offset <= span.end:
                return span
        for span in spans:
            if span.start <= offset <= span.end:
                return span
    raise ValueError(f"Offset {offset} outside document")


def blocks_in_range(spans: List[BlockSpan], start: int, end: int) -> List[BlockSpan]:
    """Text blocks touched by ``[start, end)``; a collapsed range touches one block"""
    if start == end:
        return [locate(spans, start, FORWARD)]
    touched = []
    for span in spans:
        if span.start < end and span.end > start:
            touched.append(span)
        elif span.length == 0 and start < span.start < end:
            touched.append(span)
    return touched


def split_inlines(children: List[TextNode], local: int) -> Tuple[List[TextNode], List[TextNode]]:
    """
    Split a text block's runs at a block-local offset

    Runs are copied; the left half of a split run keeps the original key.
    """
    left: List[TextNode] = []
    right: List[TextNode] = []
    position = 0
    for child in children:
        length = len(child.text)
        if position + length <= local:
            left.append(TextNode(child.text, dict(child.marks), child.key))
        elif position >= local:
            right.append(TextNode(child.text, dict(child.marks), child.key))
        else:
            cut = local - position
            left.append(TextNode(child.text[:cut], dict(child.marks), child.key))
            right.append(TextNode(child.text[cut:], dict(child.marks)))
        position += length
    return left, right


def marks_at(children: List[TextNode], local: int) -> dict:
    """Marks a character typed at ``local`` would inherit"""
    left, right = split_inlines(children, local)
    if left:
        return dict(left[-1].marks)
    if right:
        return dict(right[0].marks)
    return {}


def slice_tree(root: ElementNode, start: int, end: int) -> ElementNode:
    """Copy of ``root`` keeping only the blocks and text inside ``[start, end)``"""
    sliced = copy.deepcopy(root)
    keep = set()
    for span in block_spans(sliced):
        overlaps = span.start < end and span.end > start
        empty_inside = span.length == 0 and start < span.start < end
        if start == end or not (overlaps or empty_inside):
            continue
        local_start = max(start, span.start) - span.start
        local_end = min(end, span.end) - span.start
        _, rest = split_inlines(span.block.children, local_start)
        middle, _ = split_inlines(rest, local_end - local_start)
        span.block.children = middle
        keep.add(id(span.block))
    _drop_blocks(sliced, keep)
    prune_containers(sliced)
    return sliced


def _drop_blocks(node: ElementNode, keep: set) -> None:
    children = []
    for child in node.children:
        if child.is_text_block:
            if id(child) in keep:
                children.append(child)
        else:
            _drop_blocks(child, keep)
            children.append(child)
    node.children = children


def point_to_offset(root: ElementNode, key: str, offset: int, point_type: str = "text") -> Optional[int]:
    """
    Map a view selection point onto the logical offset space

    A ``text`` point addresses a character inside a text run, an ``element``
    point addresses a child index inside an element. Returns None when the key
    is not part of this tree or the offset is out of bounds.
    """
    found = _find_with_start(root, key, 0)
    if found is None:
        return None
    node, node_start = found
    if offset < 0:
        return None
    if isinstance(node, TextNode):
        if point_type != "text" or offset > len(node.text):
            return None
        return node_start + offset
    if point_type != "element" or offset > len(node.children):
        return None
    return node_start + sum(node_text_length(child) for child in node.children[:offset])


def _find_with_start(node, key: str, start: int):
    if node.key == key:
        return node, start
    if isinstance(node, ElementNode):
        position = start
        for child in node.children:
            found = _find_with_start(child, key, position)
            if found is not None:
                return found
            position += node_text_length(child)
    return None
