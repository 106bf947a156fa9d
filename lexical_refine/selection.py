# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Selection Tracker: native view selections -> logical offset ranges.

The browser editor reports selections as Lexical points (a node key plus an
offset) and the bounding client rect of the selected range. The tracker maps
both points onto the document's flat text space by walking the model tree,
so the result agrees with the offsets the Replacement Engine uses.

A snapshot is null when the selection is collapsed, covers only whitespace,
no document is attached, or a point is not part of the document. Computing a
snapshot never raises.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .events import EditorEvent, EditorEventType
from .model.document import Document
from .model.offsets import point_to_offset, text_between

logger = logging.getLogger(__name__)

SNAPSHOT_TEXT_SEPARATOR = " "


@dataclass(frozen=True)
class SelectionRange:
    """Half-open ``[start, end)`` range of logical offsets"""
    start: int
    end: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectionRange":
        return cls(data["from"], data["to"])

    def to_dict(self) -> Dict[str, int]:
        return {"from": self.start, "to": self.end}

    @property
    def is_collapsed(self) -> bool:
        return self.start == self.end

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class SelectionPoint:
    """A Lexical selection point"""
    key: str
    offset: int
    type: str = "text"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["SelectionPoint"]:
        if not isinstance(data, dict) or "key" not in data or "offset" not in data:
            return None
        return cls(str(data["key"]), data["offset"], data.get("type", "text"))


@dataclass(frozen=True)
class ClientRect:
    top: float
    left: float
    width: float
    height: float = 0.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ClientRect"]:
        if not isinstance(data, dict):
            return None
        try:
            return cls(float(data["top"]), float(data["left"]), float(data["width"]), float(data.get("height", 0)))
        except (KeyError, TypeError, ValueError):
            return None


@dataclass(frozen=True)
class ScreenPosition:
    x: float
    y: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class NativeSelection:
    """
    A selection as reported by the view

    Either ``anchor``/``focus`` points or an already computed ``range`` (for
    views that track offsets themselves).
    """
    anchor: Optional[SelectionPoint] = None
    focus: Optional[SelectionPoint] = None
    rect: Optional[ClientRect] = None
    range: Optional[SelectionRange] = None

    @classmethod
    def from_message(cls, data: Dict[str, Any]) -> "NativeSelection":
        selection_range = None
        if isinstance(data.get("from"), int) and isinstance(data.get("to"), int):
            selection_range = SelectionRange(data["from"], data["to"])
        return cls(
            anchor=SelectionPoint.from_dict(data.get("anchor")),
            focus=SelectionPoint.from_dict(data.get("focus")),
            rect=ClientRect.from_dict(data.get("rect")),
            range=selection_range,
        )

    @property
    def is_collapsed(self) -> bool:
        if self.range is not None:
            return self.range.is_collapsed
        return self.anchor is not None and self.anchor == self.focus


@dataclass(frozen=True)
class SelectionSnapshot:
    text: str
    serialized_fragment: str
    range: SelectionRange
    anchor_screen_position: Optional[ScreenPosition]
    version: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "serializedFragment": self.serialized_fragment,
            "range": self.range.to_dict(),
            "anchorScreenPosition": self.anchor_screen_position.to_dict() if self.anchor_screen_position else None,
            "version": self.version,
        }


def anchor_position(rect: Optional[ClientRect]) -> Optional[ScreenPosition]:
    """Horizontal centre of the top edge of the selection rect"""
    if rect is None:
        return None
    return ScreenPosition(rect.left + rect.width / 2, rect.top)


class SelectionTracker:
    """
    Turns native selection changes into SelectionSnapshots
    """

    def __init__(self, document: Optional[Document] = None, event_handler: Optional[Callable] = None):
        self._document = document
        self._event_handler = event_handler
        self._snapshot: Optional[SelectionSnapshot] = None

    @property
    def document(self) -> Optional[Document]:
        return self._document

    @property
    def current(self) -> Optional[SelectionSnapshot]:
        return self._snapshot

    def attach(self, document: Document) -> None:
        self._document = document
        self.clear()

    def detach(self) -> None:
        self._document = None
        self.clear()

    def compute_snapshot(self, native: Optional[NativeSelection]) -> Optional[SelectionSnapshot]:
        """
        Map a native selection onto the attached document

        Returns:
            A snapshot, or None for collapsed, blank or unmappable selections
        """
        document = self._document
        if document is None or native is None or native.is_collapsed:
            return None
        try:
            bounds = self._resolve(document, native)
            if bounds is None:
                return None
            start, end = bounds
            text = text_between(document.root, start, end, SNAPSHOT_TEXT_SEPARATOR)
            if not text.strip():
                return None
            return SelectionSnapshot(
                text=text,
                serialized_fragment=document.slice_markup(start, end),
                range=SelectionRange(start, end),
                anchor_screen_position=anchor_position(native.rect),
                version=document.version,
            )
        except Exception as e:
            logger.warning(f"Could not map selection: {e}")
            return None

    def _resolve(self, document: Document, native: NativeSelection):
        length = document.text_length()
        if native.range is not None:
            start, end = sorted((native.range.start, native.range.end))
        else:
            if native.anchor is None or native.focus is None:
                return None
            anchor = point_to_offset(document.root, native.anchor.key, native.anchor.offset, native.anchor.type)
            focus = point_to_offset(document.root, native.focus.key, native.focus.offset, native.focus.type)
            if anchor is None or focus is None:
                logger.debug(f"Selection point outside document {document.doc_id}")
                return None
            start, end = min(anchor, focus), max(anchor, focus)
        if start == end or start < 0 or end > length:
            return None
        return start, end

    def handle_selection_change(self, native: Optional[NativeSelection]) -> Optional[SelectionSnapshot]:
        """Replace the current snapshot and publish it"""
        self._snapshot = self.compute_snapshot(native)
        self._publish()
        return self._snapshot

    def clear(self) -> None:
        had_snapshot = self._snapshot is not None
        self._snapshot = None
        if had_snapshot:
            self._publish()

    def handle_event(self, event: EditorEvent) -> None:
        """Content changes shift offsets, so any held snapshot is dropped"""
        if event.type == EditorEventType.CONTENT_CHANGED:
            self.clear()

    def _publish(self) -> None:
        if not self._event_handler:
            return
        document = self._document
        data = {
            "doc_id": document.doc_id if document else None,
            "version": document.version if document else None,
            "selection": self._snapshot.to_dict() if self._snapshot else None,
        }
        try:
            self._event_handler(EditorEventType.SELECTION_CHANGED, data)
        except Exception as e:
            logger.error(f"Event handler error: {e}")
