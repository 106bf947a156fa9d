# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Error taxonomy for the editor core.

Every error carries a short user-facing ``title`` so that the session layer can
turn it into a notice without knowing the concrete type.
"""

from typing import Any, Dict, Optional


class EditorError(Exception):
    """Base class for all editor failures surfaced to the user"""

    title = "Editor error"

    def to_notice(self) -> Dict[str, Any]:
        return {
            "level": "error",
            "title": self.title,
            "description": str(self),
            "kind": type(self).__name__,
        }


class ParseError(EditorError):
    """Malformed upload or interchange markup"""

    title = "Could not parse document"


class InvalidRangeError(EditorError):
    """An offset range outside the document bounds or inverted"""

    title = "Invalid selection"

    def __init__(self, message: str, start: Optional[int] = None, end: Optional[int] = None,
                 length: Optional[int] = None):
        super().__init__(message)
        self.start = start
        self.end = end
        self.length = length


class StaleRangeError(InvalidRangeError):
    """The range was captured against an older document version"""

    title = "Selection is out of date"

    def __init__(self, message: str, expected_version: int, current_version: int):
        super().__init__(message)
        self.expected_version = expected_version
        self.current_version = current_version


class InvalidCommandError(EditorError):
    """Unknown formatting command or bad command value"""

    title = "Invalid formatting command"


class RefinementFailed(EditorError):
    """The refinement service errored or returned an unusable payload"""

    title = "Refinement failed"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RefinementInProgress(EditorError):
    """A refinement request is already pending for this session"""

    title = "Refinement already running"


class UnsupportedFileType(EditorError):
    """Upload rejected before any parsing attempt"""

    title = "Invalid file type"

    def __init__(self, mime_type: str):
        super().__init__(f"Unsupported file type: {mime_type or 'unknown'}. Please upload a PDF, DOCX, or TXT file")
        self.mime_type = mime_type


class MissingInstruction(EditorError):
    """A refinement was requested without an instruction"""

    title = "Missing prompt"
