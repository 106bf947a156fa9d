# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Refinement Orchestrator: the boundary to the external refinement service.

REQUEST / RESPONSE:
===================

POST <endpoint>
    {"selectedText": ..., "prompt": ..., "documentSummary": ..., "fullDocument": ...}

200 {"refinedText": ..., "researchFindings": ...}
5xx {"error": ...}

Exactly one refinement may be in flight per session. The pending flag is set
before the first await, so a second call on the same loop is rejected with
``RefinementInProgress`` and never reaches the service. Results are applied
against the version the selection was taken at; if the document changed in
the meantime the replacement aborts with ``StaleRangeError``.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import aiohttp

from .constants import DEFAULT_REFINE_ENDPOINT, SUMMARY_EXCERPT_LENGTH
from .errors import EditorError, InvalidRangeError, MissingInstruction, RefinementFailed, RefinementInProgress
from .events import EditorEventType
from .model.document import Document
from .replacement import ReplacementEngine
from .selection import SelectionSnapshot, SelectionTracker

logger = logging.getLogger(__name__)


@dataclass
class RefinementRequest:
    selected_text: str
    prompt: str
    document_summary: str
    full_document: str

    def to_payload(self) -> Dict[str, str]:
        return {
            "selectedText": self.selected_text,
            "prompt": self.prompt,
            "documentSummary": self.document_summary,
            "fullDocument": self.full_document,
        }


@dataclass
class RefinementResponse:
    refined_text: str
    research_findings: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any, status: Optional[int] = None) -> "RefinementResponse":
        """
        Raises:
            RefinementFailed: If ``refinedText`` is missing or not a string
        """
        if not isinstance(payload, dict):
            raise RefinementFailed("Refinement service returned an unexpected payload", status)
        refined = payload.get("refinedText")
        if not isinstance(refined, str):
            raise RefinementFailed("Refinement service response has no refinedText", status)
        findings = payload.get("researchFindings")
        return cls(refined, findings if isinstance(findings, str) else None)

    def to_dict(self) -> Dict[str, Any]:
        return {"refinedText": self.refined_text, "researchFindings": self.research_findings}


class RefinementClient:
    """
    JSON-over-HTTP client for the refinement function
    """

    def __init__(self, endpoint: str = DEFAULT_REFINE_ENDPOINT, api_key: Optional[str] = None,
                 timeout: float = 120.0, session: Optional[aiohttp.ClientSession] = None):
        """
        Args:
            endpoint: URL of the refine function
            api_key: Sent as a bearer token when set
            timeout: Total transport timeout in seconds
            session: Shared aiohttp session (one is opened per call otherwise)
        """
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._session = session

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    async def refine(self, request: RefinementRequest) -> RefinementResponse:
        """
        Send one refinement request

        Raises:
            RefinementFailed: Transport error, non-2xx status or malformed body
        """
        try:
            if self._session is not None:
                status, body = await self._post(self._session, request)
            else:
                async with aiohttp.ClientSession() as session:
                    status, body = await self._post(session, request)
        except aiohttp.ClientError as e:
            raise RefinementFailed(f"Refinement service unreachable: {e}")
        except asyncio.TimeoutError:
            raise RefinementFailed(f"Refinement service timed out after {self.timeout}s")

        try:
            payload = json.loads(body)
        except ValueError:
            raise RefinementFailed(f"Refinement service returned malformed JSON (HTTP {status})", status)

        if not 200 <= status < 300:
            error = payload.get("error") if isinstance(payload, dict) else None
            raise RefinementFailed(error or f"Refinement service returned HTTP {status}", status)
        return RefinementResponse.from_payload(payload, status)

    async def _post(self, session: aiohttp.ClientSession, request: RefinementRequest):
        async with session.post(
            self.endpoint,
            json=request.to_payload(),
            headers=self._headers(),
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        ) as response:
            body = await response.text()
            logger.debug(f"Refinement service answered HTTP {response.status} ({len(body)} bytes)")
            return response.status, body


class RefinementOrchestrator:
    """
    Sends the selection to the refinement service and applies the result
    """

    def __init__(
        self,
        document: Document,
        client: Any,
        tracker: Optional[SelectionTracker] = None,
        engine: Optional[ReplacementEngine] = None,
        event_handler: Optional[Callable] = None,
        summary_length: int = SUMMARY_EXCERPT_LENGTH,
    ):
        """
        Args:
            document: Session document
            client: Object with ``async refine(RefinementRequest) -> RefinementResponse``
            tracker: Source of the current selection
            engine: Applies the refined text
            event_handler: Called as ``event_handler(event_type, data)``
            summary_length: Excerpt length used when the document has no summary
        """
        self.document = document
        self.client = client
        self.tracker = tracker
        self.engine = engine or ReplacementEngine()
        self._event_handler = event_handler
        self.summary_length = summary_length
        self._pending = False
        self._instruction = ""

    @property
    def is_pending(self) -> bool:
        return self._pending

    @property
    def last_instruction(self) -> str:
        """Instruction kept after a failure so the user can retry"""
        return self._instruction

    def build_request(self, snapshot: SelectionSnapshot, instruction: str) -> RefinementRequest:
        return RefinementRequest(
            selected_text=snapshot.text,
            prompt=instruction,
            document_summary=self.document.summary_or_excerpt(self.summary_length),
            full_document=self.document.plain_text("\n"),
        )

    async def refine_selection(self, instruction: str,
                               snapshot: Optional[SelectionSnapshot] = None) -> RefinementResponse:
        """
        Refine the selected span with ``instruction``

        Args:
            instruction: What to do with the selection
            snapshot: Selection to refine (the tracker's current one by default)

        Returns:
            The service response that was applied

        Raises:
            RefinementInProgress: Another refinement is pending
            MissingInstruction: Empty instruction
            InvalidRangeError: Nothing selected
            RefinementFailed: The service failed
            StaleRangeError: The document changed while the request was in flight
        """
        if self._pending:
            raise RefinementInProgress("A refinement is already in progress, wait for it to finish")
        if snapshot is None and self.tracker is not None:
            snapshot = self.tracker.current
        if snapshot is None:
            raise InvalidRangeError("Select some text to refine")
        if not instruction or not instruction.strip():
            raise MissingInstruction("Please enter a refinement prompt")

        self._instruction = instruction
        self._pending = True
        self._emit_event(EditorEventType.REFINEMENT_STARTED, {"range": snapshot.range.to_dict()})
        try:
            request = self.build_request(snapshot, instruction)
            logger.info(f"Refining [{snapshot.range.start}, {snapshot.range.end}) of {self.document.doc_id}")
            response = await self.client.refine(request)
            self.engine.replace(self.document, snapshot.range, response.refined_text,
                                expected_version=snapshot.version)
        except EditorError as e:
            logger.warning(f"Refinement failed: {e}")
            self._emit_event(EditorEventType.REFINEMENT_FAILED, {
                "error": str(e),
                "notice": e.to_notice(),
                "instruction": instruction,
            })
            raise
        finally:
            self._pending = False

        if self.tracker is not None:
            self.tracker.clear()
        self._instruction = ""
        self._emit_event(EditorEventType.REFINEMENT_COMPLETED, {
            "range": snapshot.range.to_dict(),
            **response.to_dict(),
        })
        return response

    def _emit_event(self, event_type: EditorEventType, data: Dict[str, Any]) -> None:
        if self._event_handler:
            try:
                payload = {"doc_id": self.document.doc_id, "version": self.document.version, **data}
                self._event_handler(event_type, payload)
            except Exception as e:
                logger.error(f"Event handler error: {e}")
