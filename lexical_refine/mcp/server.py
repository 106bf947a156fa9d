# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
MCP Server for Lexical Refine

Exposes the editor sessions as MCP (Model Context Protocol) tools so an agent
can read and edit documents by plain-text offsets.

TOOLS:
======

- load_document: Replace a document with HTML or Lexical JSON content
- get_document: HTML, Lexical JSON, version and text length
- get_text: Plain text of a range
- replace_range: Replace a range with plain text or markup
- format_range: Apply a toolbar formatting command to a range
- refine_range: Send a range and an instruction to the refinement service
- export_document: Export as txt or html

Every tool answers with a single ``TextContent`` holding a JSON object with a
``success`` field. Editor failures carry ``error`` and ``notice``.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import click
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from ..config import EditorConfig, configure_logging
from ..constants import (
    MESSAGE_EXPORT,
    MESSAGE_FORMAT,
    MESSAGE_LOAD_DOCUMENT,
    MESSAGE_QUERY_DOCUMENT,
    MESSAGE_REFINE,
    MESSAGE_REPLACE,
    MESSAGE_SELECTION_CHANGE,
)
from ..errors import EditorError
from ..session import EditorSession, SessionManager

logger = logging.getLogger(__name__)

RANGE_PROPERTIES = {
    "doc_id": {"type": "string", "description": "Document identifier"},
    "from": {"type": "integer", "description": "Start offset (inclusive) in the plain text"},
    "to": {"type": "integer", "description": "End offset (exclusive) in the plain text"},
}


def _json_content(data: Dict[str, Any]) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps(data, indent=2))]


class RefineMCPServer:
    """
    MCP server backed by a SessionManager
    """

    def __init__(self, manager: Optional[SessionManager] = None):
        self.manager = manager or SessionManager()
        self.server = Server("lexical-refine")
        self._setup_handlers()

    def _setup_handlers(self):
        @self.server.list_tools()
        async def handle_list_tools() -> List[Tool]:
            return self.list_tools()

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
            return await self.call_tool(name, arguments or {})

    def list_tools(self) -> List[Tool]:
        return [
            Tool(
                name="load_document",
                description="Replace the document with HTML content or a Lexical JSON state",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "doc_id": RANGE_PROPERTIES["doc_id"],
                        "content": {"type": "string", "description": "HTML markup"},
                        "lexical": {"type": ["object", "string"], "description": "Lexical editor state"},
                        "file_name": {"type": "string", "description": "Display name used for exports"},
                    },
                    "required": ["doc_id"],
                },
            ),
            Tool(
                name="get_document",
                description="Get the document as HTML and Lexical JSON with its version and text length",
                inputSchema={
                    "type": "object",
                    "properties": {"doc_id": RANGE_PROPERTIES["doc_id"]},
                    "required": ["doc_id"],
                },
            ),
            Tool(
                name="get_text",
                description="Get the plain text of [from, to) (the whole document when omitted)",
                inputSchema={"type": "object", "properties": RANGE_PROPERTIES, "required": ["doc_id"]},
            ),
            Tool(
                name="replace_range",
                description="Replace [from, to) with plain text or HTML markup",
                inputSchema={
                    "type": "object",
                    "properties": {
                        **RANGE_PROPERTIES,
                        "text": {"type": "string", "description": "Replacement text or markup"},
                        "version": {"type": "integer", "description": "Document version the range refers to"},
                    },
                    "required": ["doc_id", "from", "to", "text"],
                },
            ),
            Tool(
                name="format_range",
                description="Apply a formatting command (bold, heading, bulletList, align, ...) to [from, to)",
                inputSchema={
                    "type": "object",
                    "properties": {
                        **RANGE_PROPERTIES,
                        "command": {"type": "string", "description": "Command name"},
                        "value": {"description": "Command value (heading level, colour, alignment)"},
                    },
                    "required": ["doc_id", "from", "to", "command"],
                },
            ),
            Tool(
                name="refine_range",
                description="Refine [from, to) with an instruction through the refinement service",
                inputSchema={
                    "type": "object",
                    "properties": {
                        **RANGE_PROPERTIES,
                        "prompt": {"type": "string", "description": "Refinement instruction"},
                    },
                    "required": ["doc_id", "from", "to", "prompt"],
                },
            ),
            Tool(
                name="export_document",
                description="Export the document as txt or html",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "doc_id": RANGE_PROPERTIES["doc_id"],
                        "format": {"type": "string", "enum": ["txt", "html"]},
                    },
                    "required": ["doc_id"],
                },
            ),
        ]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        handlers = {
            "load_document": self._load_document,
            "get_document": self._get_document,
            "get_text": self._get_text,
            "replace_range": self._replace_range,
            "format_range": self._format_range,
            "refine_range": self._refine_range,
            "export_document": self._export_document,
        }
        handler = handlers.get(name)
        if handler is None:
            return _json_content({"success": False, "error": f"Unknown tool: {name}"})
        try:
            return await handler(arguments)
        except Exception as e:
            logger.error(f"Error in tool {name}: {e}")
            return _json_content({"success": False, "error": str(e), "doc_id": arguments.get("doc_id")})

    def _session(self, arguments: Dict[str, Any]) -> EditorSession:
        return self.manager.get_or_create(arguments.get("doc_id") or "default")

    async def _dispatch(self, arguments: Dict[str, Any], message_type: str,
                        data: Dict[str, Any]) -> List[TextContent]:
        session = self._session(arguments)
        result = await session.dispatch(message_type, data)
        result.pop("type", None)
        return _json_content({"doc_id": session.doc_id, **result})

    async def _load_document(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Load HTML or Lexical content; an empty document when neither is given"""
        content = arguments.get("content")
        if content is None and arguments.get("lexical") is None:
            content = ""
        return await self._dispatch(arguments, MESSAGE_LOAD_DOCUMENT, {
            "content": content,
            "lexical": arguments.get("lexical"),
            "fileName": arguments.get("file_name"),
        })

    async def _get_document(self, arguments: Dict[str, Any]) -> List[TextContent]:
        return await self._dispatch(arguments, MESSAGE_QUERY_DOCUMENT, {})

    async def _get_text(self, arguments: Dict[str, Any]) -> List[TextContent]:
        session = self._session(arguments)
        document = session.document
        start = arguments.get("from", 0)
        end = arguments.get("to", document.text_length())
        try:
            text = document.text_between(start, end, "\n")
        except EditorError as e:
            return _json_content({
                "success": False,
                "doc_id": session.doc_id,
                "error": str(e),
                "notice": e.to_notice(),
            })
        return _json_content({
            "success": True,
            "doc_id": session.doc_id,
            "from": start,
            "to": end,
            "text": text,
            "version": document.version,
        })

    async def _replace_range(self, arguments: Dict[str, Any]) -> List[TextContent]:
        return await self._dispatch(arguments, MESSAGE_REPLACE, {
            "from": arguments.get("from"),
            "to": arguments.get("to"),
            "text": arguments.get("text", ""),
            "version": arguments.get("version"),
        })

    async def _format_range(self, arguments: Dict[str, Any]) -> List[TextContent]:
        return await self._dispatch(arguments, MESSAGE_FORMAT, {
            "from": arguments.get("from"),
            "to": arguments.get("to"),
            "command": arguments.get("command"),
            "value": arguments.get("value"),
        })

    async def _refine_range(self, arguments: Dict[str, Any]) -> List[TextContent]:
        """Select the range, then refine it"""
        session = self._session(arguments)
        selected = await session.dispatch(MESSAGE_SELECTION_CHANGE, {
            "from": arguments.get("from"),
            "to": arguments.get("to"),
        })
        if selected.get("selection") is None:
            return _json_content({
                "success": False,
                "doc_id": session.doc_id,
                "error": "The range does not select any text",
            })
        return await self._dispatch(arguments, MESSAGE_REFINE, {"prompt": arguments.get("prompt", "")})

    async def _export_document(self, arguments: Dict[str, Any]) -> List[TextContent]:
        return await self._dispatch(arguments, MESSAGE_EXPORT, {"format": arguments.get("format", "html")})

    async def run_stdio(self):
        """Serve MCP over stdin/stdout"""
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(read_stream, write_stream, self.server.create_initialization_options())


@click.command()
@click.option("--log-level", default="INFO", help="Logging level")
@click.option("--endpoint", default=None, help="URL of the refinement service")
def main(log_level: str, endpoint: Optional[str]):
    """Run the Lexical Refine MCP server over stdio"""
    configure_logging(log_level)
    config = EditorConfig.from_env()
    if endpoint:
        config.refine_endpoint = endpoint
    logger.info(f"Starting Lexical Refine MCP server (refinement service: {config.refine_endpoint})")
    mcp_server = RefineMCPServer(SessionManager(config))
    try:
        asyncio.run(mcp_server.run_stdio())
    except KeyboardInterrupt:
        logger.info("Shutting down MCP server...")


if __name__ == "__main__":
    main()
