# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Document: the canonical rich-text document of an editor session.

The tree (``root``) is the source of truth. Everything else is derived from it
and rebuilt or dropped on every mutation:

- ``serialized``: HTML rendering, always consistent with ``root``
- ``summary``: optional digest, dropped on mutation
- cached Lexical state and Loro snapshot, dropped on mutation

Mutations go through ``_commit`` which swaps in a fully built new tree, bumps
``version`` and emits ``CONTENT_CHANGED``. A failed operation never reaches
``_commit`` so the document is left exactly as it was.
"""

import copy
import logging
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ..constants import DEFAULT_FILE_NAME, DEFAULT_TREE_NAME, SUMMARY_EXCERPT_LENGTH
from ..errors import InvalidRangeError, StaleRangeError
from ..events import EditorEventType
from .formatting import FormatCommand, apply_format
from .html_converter import parse_html, render_html
from .lexical_converter import LexicalTreeConverter, from_lexical_state, to_lexical_state
from .nodes import ElementNode, ensure_block, make_root, node_signature, prune_containers
from .offsets import block_spans, slice_tree, text_between
from .offsets import text_length as tree_text_length

logger = logging.getLogger(__name__)


class Document:
    """
    In-memory rich-text document with a derived HTML serialization
    """

    def __init__(
        self,
        root: Optional[ElementNode] = None,
        file_name: str = DEFAULT_FILE_NAME,
        summary: Optional[str] = None,
        doc_id: Optional[str] = None,
        event_handler: Optional[Callable] = None,
        tree_name: str = DEFAULT_TREE_NAME,
    ):
        """
        Args:
            root: Document tree (an empty paragraph when omitted)
            file_name: Display name used for exports
            summary: Optional digest sent as refinement context
            doc_id: Identifier used in events and logs
            event_handler: Called as ``event_handler(event_type, data)``
            tree_name: Loro tree container name for snapshots
        """
        self._root = ensure_block(root if root is not None else make_root())
        self.file_name = file_name or DEFAULT_FILE_NAME
        self._summary = summary
        self.doc_id = doc_id
        self.tree_name = tree_name
        self._event_handler = event_handler
        self._version = 0
        self._serialized = render_html(self._root)
        self._lexical_cache: Optional[Dict[str, Any]] = None
        self._snapshot_cache: Optional[bytes] = None

    @classmethod
    def load(cls, markup: str, strict: bool = False, **kwargs) -> "Document":
        """
        Build a document from interchange markup

        Args:
            markup: HTML string
            strict: Raise ``ParseError`` on malformed markup instead of
                keeping only its text

        Raises:
            ParseError: Malformed markup in strict mode
        """
        return cls(parse_html(markup, strict=strict), **kwargs)

    @classmethod
    def from_lexical_state(cls, lexical_state: Union[str, Dict[str, Any]], **kwargs) -> "Document":
        return cls(from_lexical_state(lexical_state), **kwargs)

    # Derived state

    @property
    def root(self) -> ElementNode:
        return self._root

    @property
    def serialized(self) -> str:
        return self._serialized

    @property
    def version(self) -> int:
        return self._version

    @property
    def summary(self) -> Optional[str]:
        return self._summary

    @summary.setter
    def summary(self, value: Optional[str]) -> None:
        self._summary = value

    def serialize(self) -> str:
        return self._serialized

    def to_lexical_state(self) -> Dict[str, Any]:
        if self._lexical_cache is None:
            self._lexical_cache = to_lexical_state(self._root)
        return copy.deepcopy(self._lexical_cache)

    def get_snapshot(self) -> bytes:
        """Binary Loro snapshot of the Lexical state at the current version"""
        if self._snapshot_cache is None:
            converter = LexicalTreeConverter(tree_name=self.tree_name)
            converter.import_from_lexical_state(self.to_lexical_state())
            self._snapshot_cache = converter.export_snapshot()
            logger.debug(f"Built Loro snapshot for {self.doc_id} v{self._version}: {len(self._snapshot_cache)} bytes")
        return self._snapshot_cache

    def text_length(self) -> int:
        return tree_text_length(self._root)

    def plain_text(self, block_separator: str = "\n") -> str:
        return block_separator.join(
            "".join(run.text for run in span.block.children) for span in block_spans(self._root)
        )

    def text_between(self, start: int, end: int, block_separator: str = "") -> str:
        self.validate_range(start, end)
        return text_between(self._root, start, end, block_separator)

    def summary_or_excerpt(self, limit: int = SUMMARY_EXCERPT_LENGTH) -> str:
        if self._summary:
            return self._summary
        return self.plain_text(" ")[:limit]

    def slice_markup(self, start: int, end: int) -> str:
        """HTML of the part of the document covered by ``[start, end)``"""
        self.validate_range(start, end)
        return render_html(slice_tree(self._root, start, end))

    # Validation

    def validate_range(self, start: Any, end: Any) -> None:
        """
        Raises:
            InvalidRangeError: If the range is not ``0 <= start <= end <= text_length``
        """
        length = self.text_length()
        if isinstance(start, bool) or isinstance(end, bool) or not isinstance(start, int) or not isinstance(end, int):
            raise InvalidRangeError(f"Range offsets must be integers, got [{start!r}, {end!r})", start, end, length)
        if start < 0 or end > length:
            raise InvalidRangeError(f"Range [{start}, {end}) outside document of length {length}", start, end, length)
        if start > end:
            raise InvalidRangeError(f"Range [{start}, {end}) is inverted", start, end, length)

    def check_version(self, expected_version: Optional[int]) -> None:
        """
        Raises:
            StaleRangeError: If the document changed since ``expected_version``
        """
        if expected_version is not None and expected_version != self._version:
            raise StaleRangeError(
                f"Document changed since the selection was made (v{expected_version} -> v{self._version}), please reselect",
                expected_version,
                self._version,
            )

    # Mutation

    def working_copy(self) -> ElementNode:
        return copy.deepcopy(self._root)

    def apply_format_command(self, start: int, end: int, command: FormatCommand,
                             expected_version: Optional[int] = None) -> "Document":
        """
        Apply a formatting command over ``[start, end)``

        Raises:
            InvalidRangeError: Out-of-bounds or inverted range
            StaleRangeError: ``expected_version`` is not the current version
            InvalidCommandError: Unknown command or bad value
        """
        self.validate_range(start, end)
        self.check_version(expected_version)
        command.validate()
        new_root = self.working_copy()
        apply_format(new_root, start, end, command)
        self._commit(new_root, "format", command=command.name, range={"from": start, "to": end})
        return self

    def reload(self, new_root: ElementNode, file_name: Optional[str] = None,
               summary: Optional[str] = None) -> bool:
        """
        Replace the whole content (upload, load-document)

        The version keeps counting so that selections taken before the
        reload are recognised as stale.
        """
        changed = self._commit(new_root, "load")
        if file_name:
            self.file_name = file_name
        self._summary = summary
        return changed

    def _commit(self, new_root: ElementNode, action: str, **data) -> bool:
        """Swap in ``new_root``; returns False when nothing changed structurally"""
        prune_containers(new_root)
        ensure_block(new_root)
        if node_signature(new_root) == node_signature(self._root):
            logger.debug(f"No-op {action} on {self.doc_id}, version stays {self._version}")
            return False
        self._root = new_root
        self._version += 1
        self._serialized = render_html(new_root)
        self._summary = None
        self._lexical_cache = None
        self._snapshot_cache = None
        logger.info(f"Document {self.doc_id} {action} -> v{self._version} ({self.text_length()} chars)")
        self._emit_event(EditorEventType.CONTENT_CHANGED, {"action": action, **data})
        return True

    def _emit_event(self, event_type: EditorEventType, data: Dict[str, Any]) -> None:
        """
        Emit event to registered handler

        Args:
            event_type: Type of event
            data: Event data
        """
        if self._event_handler:
            try:
                payload = {"doc_id": self.doc_id, "version": self._version, **data}
                self._event_handler(event_type, payload)
            except Exception as e:
                logger.error(f"Event handler error: {e}")


def load(markup: str, strict: bool = False, **kwargs) -> Document:
    return Document.load(markup, strict=strict, **kwargs)


def serialize(doc: Document) -> str:
    return doc.serialize()


def apply_format_command(doc: Document, range_: Any, command: Union[FormatCommand, Dict[str, Any]]) -> Document:
    """
    Module-level form taking a ``(from, to)`` pair or an object with
    ``start``/``end``
    """
    start, end = range_bounds(range_)
    if isinstance(command, dict):
        command = FormatCommand.from_dict(command)
    return doc.apply_format_command(start, end, command)


def text_length(doc: Document) -> int:
    return doc.text_length()


def range_bounds(range_: Any) -> Tuple[Any, Any]:
    """``(from, to)`` of a ``SelectionRange``, a ``{"from", "to"}`` dict or a pair"""
    if hasattr(range_, "start") and hasattr(range_, "end"):
        return range_.start, range_.end
    if isinstance(range_, dict):
        return range_.get("from"), range_.get("to")
    start, end = range_
    return start, end
