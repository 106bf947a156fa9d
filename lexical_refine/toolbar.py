# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""Toolbar commands applied at the tracked selection."""

import logging
from typing import Any, Dict, Optional, Union

from .errors import InvalidRangeError
from .model.document import Document
from .model.formatting import FormatCommand
from .selection import SelectionRange, SelectionTracker

logger = logging.getLogger(__name__)


class FormattingController:
    """
    Issues formatting commands against the document at the current selection
    """

    def __init__(self, document: Document, tracker: Optional[SelectionTracker] = None):
        self.document = document
        self.tracker = tracker

    def apply(self, command: Union[FormatCommand, Dict[str, Any]],
              selection_range: Optional[SelectionRange] = None) -> Document:
        """
        Apply ``command`` over ``selection_range`` or the tracked selection

        Raises:
            InvalidRangeError: No range given and nothing selected, or the
                range is out of bounds
            InvalidCommandError: Unknown command
        """
        if isinstance(command, dict):
            command = FormatCommand.from_dict(command)
        expected_version = None
        if selection_range is None:
            snapshot = self.tracker.current if self.tracker else None
            if snapshot is None:
                raise InvalidRangeError("Select some text before formatting")
            selection_range = snapshot.range
            expected_version = snapshot.version
        logger.debug(f"Formatting [{selection_range.start}, {selection_range.end}) with {command.name}")
        return self.document.apply_format_command(
            selection_range.start, selection_range.end, command, expected_version=expected_version
        )

    def toggle_bold(self, selection_range: Optional[SelectionRange] = None) -> Document:
        return self.apply(FormatCommand("bold"), selection_range)

    def toggle_italic(self, selection_range: Optional[SelectionRange] = None) -> Document:
        return self.apply(FormatCommand("italic"), selection_range)

    def set_heading(self, level: int, selection_range: Optional[SelectionRange] = None) -> Document:
        return self.apply(FormatCommand("heading", level), selection_range)

    def set_alignment(self, align: Optional[str], selection_range: Optional[SelectionRange] = None) -> Document:
        return self.apply(FormatCommand("align", align), selection_range)

    def set_highlight(self, color: Optional[str], selection_range: Optional[SelectionRange] = None) -> Document:
        return self.apply(FormatCommand("highlight", color), selection_range)

    def set_color(self, color: Optional[str], selection_range: Optional[SelectionRange] = None) -> Document:
        return self.apply(FormatCommand("color", color), selection_range)
