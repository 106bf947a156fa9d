# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""WebSocket transport for editor sessions."""

from .server import EditorWebSocketServer, main

__all__ = ["EditorWebSocketServer", "main"]
