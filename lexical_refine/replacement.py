# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Replacement Engine: structural replacement of an offset range.

replace(doc, [from, to), new_text):

1. Validate ``0 <= from <= to <= text_length`` and the expected version
2. On a copy of the tree, locate the start block (forward bias) and the end
   block (backward bias), keep the runs left of ``from`` and right of ``to``,
   and drop every block in between (the end block merges into the start block)
3. Insert the new content at the collapsed point:
   - plain text verbatim, carrying the marks of the replaced text (or of the
     run before the caret for a pure insertion)
   - markup as a parsed fragment: one block is inlined, several blocks split
     the host block and the trailing runs follow the last inserted block
4. Check the length postcondition and commit the copy in one step
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import EditorError, ParseError
from .model.document import Document, range_bounds
from .model.html_converter import looks_like_markup, parse_fragment
from .model.nodes import (
    ElementNode,
    NodeKind,
    TextNode,
    iter_text_blocks,
    normalize_block,
)
from .model.offsets import BACKWARD, FORWARD, BlockSpan, block_spans, locate, split_inlines
from .model.offsets import text_length as tree_text_length

logger = logging.getLogger(__name__)


class ReplacementEngine:
    """
    Applies offset-addressed replacements to a Document
    """

    def replace(
        self,
        doc: Document,
        range_: Any,
        new_text: str,
        expected_version: Optional[int] = None,
        as_markup: Optional[bool] = None,
    ) -> Document:
        """
        Replace ``[from, to)`` with ``new_text``

        Args:
            doc: Target document (mutated in place, returned for chaining)
            range_: ``SelectionRange``, ``{"from", "to"}`` dict or ``(from, to)``
            new_text: Replacement content
            expected_version: Version the range was captured at; a different
                current version aborts the edit
            as_markup: Force (True) or forbid (False) fragment parsing; by
                default text with recognised tags is parsed

        Returns:
            The document

        Raises:
            InvalidRangeError: Out-of-bounds or inverted range
            StaleRangeError: The document changed since ``expected_version``
        """
        start, end = range_bounds(range_)
        doc.validate_range(start, end)
        doc.check_version(expected_version)
        if not isinstance(new_text, str):
            raise ParseError(f"Replacement content must be a string, got {type(new_text).__name__}")

        old_length = doc.text_length()
        fragment = self._parse_content(new_text, as_markup)
        new_root = doc.working_copy()
        if fragment is None:
            inserted = splice_text(new_root, start, end, new_text)
        else:
            inserted = splice_fragment(new_root, start, end, fragment)

        expected_length = old_length - (end - start) + inserted
        actual_length = tree_text_length(new_root)
        if actual_length != expected_length:
            logger.error(f"Replacement length mismatch: expected {expected_length}, got {actual_length}")
            raise EditorError(f"Replacement produced {actual_length} characters, expected {expected_length}")

        doc._commit(new_root, "replace", range={"from": start, "to": end}, inserted=inserted)
        return doc

    def _parse_content(self, new_text: str, as_markup: Optional[bool]) -> Optional[List[ElementNode]]:
        markup = looks_like_markup(new_text) if as_markup is None else as_markup
        if not markup:
            return None
        try:
            return parse_fragment(new_text)
        except ParseError as e:
            if as_markup:
                raise
            logger.warning(f"Replacement looked like markup but did not parse, inserting as text: {e}")
            return None


def _span_index(spans: List[BlockSpan], span: BlockSpan) -> int:
    for index, candidate in enumerate(spans):
        if candidate.block is span.block:
            return index
    raise ValueError("Block not found in document")


def _cut(root: ElementNode, start: int, end: int) -> Tuple[BlockSpan, List[TextNode], List[TextNode], Dict[str, Any]]:
    """
    Delete ``[start, end)`` from ``root``

    Returns the start block span, the runs left of ``start``, the runs right
    of ``end`` and the marks inserted text should carry. The start block is
    left without children for the caller to refill.
    """
    spans = block_spans(root)
    first = locate(spans, start, FORWARD)
    last = first if start == end else locate(spans, end, BACKWARD)
    first_index = _span_index(spans, first)
    last_index = _span_index(spans, last)

    left, removed = split_inlines(first.block.children, start - first.start)
    _, right = split_inlines(last.block.children, end - last.start)

    if start < end and removed:
        marks = dict(removed[0].marks)
    elif left:
        marks = dict(left[-1].marks)
    elif right:
        marks = dict(right[0].marks)
    else:
        marks = {}

    for span in spans[first_index + 1:last_index + 1]:
        span.parent.children = [child for child in span.parent.children if child is not span.block]

    first.block.children = []
    return first, left, right, marks


def splice_text(root: ElementNode, start: int, end: int, text: str) -> int:
    """Replace ``[start, end)`` of ``root`` with plain text; returns the inserted length"""
    first, left, right, marks = _cut(root, start, end)
    inserted = [TextNode(text, marks)] if text else []
    first.block.children = left + inserted + right
    normalize_block(first.block)
    return len(text)


def _fragment_blocks(fragment: List[ElementNode]) -> List[Tuple[ElementNode, Optional[str]]]:
    """Text blocks of a parsed fragment with the list type they came from"""
    blocks = []
    for node in fragment:
        if node.kind == NodeKind.LIST:
            list_type = node.attrs.get("listType", "bullet")
            blocks.extend((item, list_type) for item in node.children)
        else:
            blocks.append((node, None))
    return blocks


def _adapt_blocks(blocks: List[Tuple[ElementNode, Optional[str]]], parent: ElementNode) -> List[ElementNode]:
    """Shape inserted blocks for their new parent"""
    if parent.kind == NodeKind.LIST:
        adapted = []
        for block, _ in blocks:
            attrs = {"align": block.attrs["align"]} if block.attrs.get("align") else {}
            adapted.append(ElementNode(NodeKind.LIST_ITEM, block.children, attrs, block.key))
        return adapted

    adapted = []
    for block, list_type in blocks:
        if list_type is None:
            adapted.append(block)
            continue
        if adapted and adapted[-1].kind == NodeKind.LIST and adapted[-1].attrs.get("listType") == list_type:
            adapted[-1].children.append(block)
        else:
            adapted.append(ElementNode(NodeKind.LIST, [block], {"listType": list_type}))
    return adapted


def _last_text_block(nodes: List[ElementNode]) -> ElementNode:
    node = nodes[-1]
    if node.kind == NodeKind.LIST:
        return node.children[-1]
    return node


def splice_fragment(root: ElementNode, start: int, end: int, fragment: List[ElementNode]) -> int:
    """Replace ``[start, end)`` of ``root`` with parsed blocks; returns the inserted length"""
    blocks = _fragment_blocks(fragment)
    inserted = sum(len(run.text) for block, _ in blocks for run in block.children)
    first, left, right, _ = _cut(root, start, end)

    if len(blocks) <= 1:
        runs = blocks[0][0].children if blocks else []
        first.block.children = left + list(runs) + right
        normalize_block(first.block)
        return inserted

    head, tail = blocks[0], blocks[1:]
    first.block.children = left + list(head[0].children)
    normalize_block(first.block)

    new_nodes = _adapt_blocks(tail, first.parent)
    last_block = _last_text_block(new_nodes)
    last_block.children = list(last_block.children) + right

    siblings = first.parent.children
    position = next(i for i, child in enumerate(siblings) if child is first.block)
    first.parent.children = siblings[:position + 1] + new_nodes + siblings[position + 1:]

    for block, _ in iter_text_blocks(root):
        normalize_block(block)
    return inserted


_engine = ReplacementEngine()


def replace(doc: Document, range_: Union[Any, Tuple[int, int]], new_text: str,
            expected_version: Optional[int] = None, as_markup: Optional[bool] = None) -> Document:
    """Module-level shortcut for ``ReplacementEngine().replace``"""
    return _engine.replace(doc, range_, new_text, expected_version=expected_version, as_markup=as_markup)
