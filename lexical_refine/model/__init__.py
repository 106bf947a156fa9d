# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

from .document import Document
from .formatting import FormatCommand
from .nodes import ElementNode, NodeKind, TextNode

__all__ = ['Document', 'FormatCommand', 'ElementNode', 'NodeKind', 'TextNode']
