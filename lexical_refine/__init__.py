# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Lexical Refine - editing core for AI-assisted refinement of rich-text documents
"""

from .model.document import Document
from .replacement import ReplacementEngine
from .selection import SelectionTracker
from .session import EditorSession, SessionManager

__all__ = ["Document", "ReplacementEngine", "SelectionTracker", "EditorSession", "SessionManager"]
