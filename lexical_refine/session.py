# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
EditorSession: wires the editor components around one document.

    Document ──CONTENT_CHANGED──> EventStream ──> SelectionTracker.clear
        ^                              ^
        │                              └── SELECTION_CHANGED, REFINEMENT_*
    ReplacementEngine <── RefinementOrchestrator <── SelectionTracker.current

``dispatch(message_type, data)`` is the single entry point used by the
transports. It never raises for editor failures: an ``EditorError`` becomes a
``{"success": False, "error": ..., "notice": {...}}`` response and a NOTICE
event.
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

from .config import EditorConfig
from .constants import (
    MESSAGE_EXPORT,
    MESSAGE_FORMAT,
    MESSAGE_KEEPALIVE,
    MESSAGE_LOAD_DOCUMENT,
    MESSAGE_QUERY_DOCUMENT,
    MESSAGE_REFINE,
    MESSAGE_REPLACE,
    MESSAGE_SELECTION_CHANGE,
    MESSAGE_UPLOAD,
)
from .errors import EditorError, InvalidCommandError, ParseError
from .events import EditorEventType, EventStream
from .export import export_document
from .ingest import ingest_upload
from .model.document import Document
from .model.formatting import FormatCommand
from .model.html_converter import parse_html
from .model.lexical_converter import from_lexical_state
from .refinement import RefinementClient, RefinementOrchestrator
from .replacement import ReplacementEngine
from .selection import NativeSelection, SelectionRange, SelectionTracker
from .toolbar import FormattingController

logger = logging.getLogger(__name__)


def _parse_range(data: Dict[str, Any]) -> Optional[SelectionRange]:
    if "range" in data and isinstance(data["range"], dict):
        data = data["range"]
    if "from" not in data and "to" not in data:
        return None
    return SelectionRange(data.get("from"), data.get("to"))


class EditorSession:
    """
    One document with its selection tracker, engines and event stream
    """

    def __init__(self, doc_id: str, client: Any = None, config: Optional[EditorConfig] = None):
        """
        Args:
            doc_id: Document identifier
            client: Refinement client (built from ``config`` when omitted)
            config: Runtime configuration
        """
        self.doc_id = doc_id
        self.config = config or EditorConfig()
        self.events = EventStream()
        self.document = Document(doc_id=doc_id, event_handler=self.events)
        self.tracker = SelectionTracker(self.document, self.events)
        self.events.subscribe(self.tracker.handle_event, [EditorEventType.CONTENT_CHANGED])
        self.engine = ReplacementEngine()
        self.formatter = FormattingController(self.document, self.tracker)
        self.client = client or RefinementClient(
            self.config.refine_endpoint, self.config.api_key, self.config.timeout
        )
        self.orchestrator = RefinementOrchestrator(
            self.document,
            self.client,
            tracker=self.tracker,
            engine=self.engine,
            event_handler=self.events,
            summary_length=self.config.summary_length,
        )
        logger.info(f"Created editor session for document: {doc_id}")

    # Operations

    def document_state(self) -> Dict[str, Any]:
        return {
            "doc_id": self.doc_id,
            "html": self.document.serialized,
            "lexical": self.document.to_lexical_state(),
            "version": self.document.version,
            "textLength": self.document.text_length(),
            "fileName": self.document.file_name,
            "summary": self.document.summary,
        }

    def load_document(self, content: Optional[str] = None, lexical: Any = None,
                      file_name: Optional[str] = None, summary: Optional[str] = None) -> Dict[str, Any]:
        """
        Replace the document with HTML ``content`` or a Lexical state

        Raises:
            ParseError: Neither content nor a valid Lexical state given, or
                malformed markup with strict parsing enabled
        """
        if lexical is not None:
            root = from_lexical_state(lexical)
        elif content is not None:
            root = parse_html(content, strict=self.config.strict_markup)
        else:
            raise ParseError("load-document needs 'content' (HTML) or 'lexical'")
        self.document.reload(root, file_name=file_name, summary=summary)
        self.tracker.clear()
        self.events(EditorEventType.DOCUMENT_LOADED, {
            "doc_id": self.doc_id,
            "version": self.document.version,
            "fileName": self.document.file_name,
        })
        return self.document_state()

    def upload(self, data: bytes, mime_type: str, file_name: str) -> Dict[str, Any]:
        result = ingest_upload(data, mime_type, file_name)
        state = self.load_document(content=result.content, file_name=result.file_name, summary=result.summary)
        return {**state, "upload": result.to_dict()}

    def select(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        snapshot = self.tracker.handle_selection_change(NativeSelection.from_message(data))
        return snapshot.to_dict() if snapshot else None

    def format(self, command: Dict[str, Any], selection_range: Optional[SelectionRange] = None) -> Dict[str, Any]:
        self.formatter.apply(FormatCommand.from_dict(command), selection_range)
        return self.document_state()

    def replace(self, selection_range: SelectionRange, text: str,
                expected_version: Optional[int] = None) -> Dict[str, Any]:
        self.engine.replace(self.document, selection_range, text, expected_version=expected_version)
        return self.document_state()

    async def refine(self, instruction: str) -> Dict[str, Any]:
        response = await self.orchestrator.refine_selection(instruction)
        return {**response.to_dict(), "document": self.document_state()}

    def export(self, fmt: str) -> Dict[str, Any]:
        return export_document(self.document, fmt).to_dict()

    # Transport entry point

    async def dispatch(self, message_type: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Handle one transport message

        Returns:
            ``{"success": True, ...}`` or ``{"success": False, "error", "notice"}``
        """
        data = data or {}
        try:
            result = await self._dispatch(message_type, data)
            return {"success": True, "type": message_type, **result}
        except EditorError as e:
            logger.warning(f"{message_type} failed for {self.doc_id}: {e}")
            notice = e.to_notice()
            self.events(EditorEventType.NOTICE, {"doc_id": self.doc_id, "version": self.document.version, **notice})
            return {
                "success": False,
                "type": message_type,
                "error": str(e),
                "notice": notice,
                "instruction": self.orchestrator.last_instruction,
            }
        except Exception as e:
            logger.error(f"Unexpected error handling {message_type} for {self.doc_id}: {e}")
            notice = {"level": "error", "title": "Unexpected error", "description": str(e), "kind": type(e).__name__}
            return {"success": False, "type": message_type, "error": str(e), "notice": notice}

    async def _dispatch(self, message_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if message_type == MESSAGE_LOAD_DOCUMENT:
            return {"document": self.load_document(
                content=data.get("content"),
                lexical=data.get("lexical"),
                file_name=data.get("fileName"),
                summary=data.get("summary"),
            )}
        if message_type == MESSAGE_UPLOAD:
            try:
                payload = base64.b64decode(data.get("data") or "", validate=True)
            except (binascii.Error, ValueError):
                raise ParseError("Upload data must be base64 encoded")
            return {"document": self.upload(payload, data.get("mimeType", ""), data.get("fileName", ""))}
        if message_type == MESSAGE_QUERY_DOCUMENT:
            return {"document": self.document_state()}
        if message_type == MESSAGE_SELECTION_CHANGE:
            return {"selection": self.select(data)}
        if message_type == MESSAGE_FORMAT:
            command = data.get("command")
            if isinstance(command, str):
                command = {"name": command, "value": data.get("value")}
            if not isinstance(command, dict):
                raise InvalidCommandError("format needs a 'command'")
            return {"document": self.format(command, _parse_range(data))}
        if message_type == MESSAGE_REPLACE:
            selection_range = _parse_range(data)
            if selection_range is None:
                raise InvalidCommandError("replace needs 'from' and 'to'")
            return {"document": self.replace(selection_range, data.get("text", ""), data.get("version"))}
        if message_type == MESSAGE_REFINE:
            return await self.refine(data.get("prompt") or data.get("instruction") or "")
        if message_type == MESSAGE_EXPORT:
            return {"export": self.export(data.get("format", "html"))}
        if message_type == MESSAGE_KEEPALIVE:
            return {"ping_id": data.get("ping_id")}
        raise InvalidCommandError(f"Unknown message type: {message_type}")


class SessionManager:
    """
    Keeps one EditorSession per document id
    """

    def __init__(self, config: Optional[EditorConfig] = None, client: Any = None):
        self.config = config or EditorConfig()
        self.client = client
        self.sessions: Dict[str, EditorSession] = {}

    def get_or_create(self, doc_id: str) -> EditorSession:
        if doc_id not in self.sessions:
            self.sessions[doc_id] = EditorSession(doc_id, client=self.client, config=self.config)
        return self.sessions[doc_id]

    def get(self, doc_id: str) -> Optional[EditorSession]:
        return self.sessions.get(doc_id)

    def remove(self, doc_id: str) -> bool:
        return self.sessions.pop(doc_id, None) is not None

    def list_documents(self) -> List[str]:
        return list(self.sessions.keys())

    def clear(self) -> None:
        self.sessions.clear()
