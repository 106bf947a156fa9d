# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Test suite for the Refinement Orchestrator and the HTTP refinement client.

The orchestrator is driven with in-process fake clients; the HTTP client is
exercised against a local aiohttp application.
"""

import asyncio

import pytest
from aiohttp import test_utils, web

from lexical_refine.errors import (
    InvalidRangeError,
    MissingInstruction,
    RefinementFailed,
    RefinementInProgress,
    StaleRangeError,
)
from lexical_refine.events import EditorEventType, EventStream
from lexical_refine.model.document import Document
from lexical_refine.model.formatting import FormatCommand
from lexical_refine.refinement import (
    RefinementClient,
    RefinementOrchestrator,
    RefinementRequest,
    RefinementResponse,
)
from lexical_refine.selection import NativeSelection, SelectionRange, SelectionTracker


class FakeClient:
    """Answers every request with a fixed text and records the requests"""

    def __init__(self, refined_text="improved", findings=None, error=None):
        self.refined_text = refined_text
        self.findings = findings
        self.error = error
        self.requests = []

    async def refine(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return RefinementResponse(self.refined_text, self.findings)


class GatedClient(FakeClient):
    """Blocks until the test releases it"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def refine(self, request):
        self.entered.set()
        await self.release.wait()
        return await super().refine(request)


def make_orchestrator(client, markup="<p>The quick brown fox</p>", select=(4, 9)):
    events = []
    stream = EventStream()
    stream.subscribe(events.append)
    doc = Document.load(markup, doc_id="refine", event_handler=stream)
    tracker = SelectionTracker(doc, stream)
    stream.subscribe(tracker.handle_event, [EditorEventType.CONTENT_CHANGED])
    if select:
        tracker.handle_selection_change(NativeSelection(range=SelectionRange(*select)))
    orchestrator = RefinementOrchestrator(doc, client, tracker=tracker, event_handler=stream)
    return orchestrator, doc, tracker, events


def event_types(events):
    return [event.type for event in events]


class TestRefineSelection:

    @pytest.mark.asyncio
    async def test_refined_text_replaces_selection(self):
        client = FakeClient("slow", findings="Foxes are fast")
        orchestrator, doc, tracker, events = make_orchestrator(client)

        response = await orchestrator.refine_selection("make it the opposite")

        assert response.research_findings == "Foxes are fast"
        assert doc.plain_text() == "The slow brown fox"
        assert tracker.current is None
        assert not orchestrator.is_pending
        assert orchestrator.last_instruction == ""
        types = event_types(events)
        assert types.index(EditorEventType.REFINEMENT_STARTED) < types.index(EditorEventType.CONTENT_CHANGED)
        assert types[-1] == EditorEventType.REFINEMENT_COMPLETED
        assert events[-1].data["refinedText"] == "slow"

    @pytest.mark.asyncio
    async def test_select_refine_replace_scenario(self):
        client = FakeClient("feline companion")
        orchestrator, doc, _, _ = make_orchestrator(client, "<p>The cat sat on the mat.</p>", (4, 7))
        before = doc.text_length()

        await orchestrator.refine_selection("more elaborate")

        assert client.requests[0].selected_text == "cat"
        assert doc.plain_text() == "The feline companion sat on the mat."
        assert doc.text_length() == before + len("feline companion") - 3

    @pytest.mark.asyncio
    async def test_request_payload(self):
        client = FakeClient()
        orchestrator, doc, _, _ = make_orchestrator(client, "<h1>Title</h1><p>The quick brown fox</p>", (9, 14))
        await orchestrator.refine_selection("shorter")

        request = client.requests[0]
        assert request.selected_text == "quick"
        assert request.prompt == "shorter"
        assert request.full_document == "Title\nThe quick brown fox"
        assert request.document_summary == "Title The quick brown fox"
        assert set(request.to_payload()) == {"selectedText", "prompt", "documentSummary", "fullDocument"}

    @pytest.mark.asyncio
    async def test_summary_is_preferred_over_excerpt(self):
        client = FakeClient()
        orchestrator, doc, _, _ = make_orchestrator(client)
        doc.summary = "A story about a fox"
        await orchestrator.refine_selection("rewrite")
        assert client.requests[0].document_summary == "A story about a fox"

    @pytest.mark.asyncio
    async def test_excerpt_is_truncated(self):
        client = FakeClient()
        orchestrator, _, _, _ = make_orchestrator(client, "<p>" + "word " * 400 + "</p>", (0, 4))
        await orchestrator.refine_selection("rewrite")
        assert len(client.requests[0].document_summary) == 1000

    @pytest.mark.asyncio
    async def test_markup_result_is_parsed(self):
        orchestrator, doc, _, _ = make_orchestrator(FakeClient("<strong>slow</strong>"))
        await orchestrator.refine_selection("bold and opposite")
        assert doc.serialized == "<p>The <strong>slow</strong> brown fox</p>"

    @pytest.mark.asyncio
    async def test_explicit_snapshot(self):
        client = FakeClient("lazy")
        orchestrator, doc, tracker, _ = make_orchestrator(client, select=None)
        snapshot = tracker.compute_snapshot(NativeSelection(range=SelectionRange(16, 19)))
        await orchestrator.refine_selection("replace", snapshot)
        assert doc.plain_text() == "The quick brown lazy"


class TestRefinementRejections:

    @pytest.mark.asyncio
    async def test_no_selection(self):
        client = FakeClient()
        orchestrator, doc, _, _ = make_orchestrator(client, select=None)
        with pytest.raises(InvalidRangeError):
            await orchestrator.refine_selection("anything")
        assert client.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("instruction", ["", "   ", None])
    async def test_missing_instruction(self, instruction):
        client = FakeClient()
        orchestrator, doc, _, _ = make_orchestrator(client)
        with pytest.raises(MissingInstruction):
            await orchestrator.refine_selection(instruction)
        assert client.requests == []
        assert doc.version == 0

    @pytest.mark.asyncio
    async def test_second_refinement_is_rejected_while_pending(self):
        client = GatedClient(refined_text="slow")
        orchestrator, doc, _, _ = make_orchestrator(client)

        first = asyncio.create_task(orchestrator.refine_selection("opposite"))
        await client.entered.wait()
        assert orchestrator.is_pending
        with pytest.raises(RefinementInProgress):
            await orchestrator.refine_selection("again")

        client.release.set()
        await first
        assert len(client.requests) == 1
        assert doc.plain_text() == "The slow brown fox"
        assert not orchestrator.is_pending

    @pytest.mark.asyncio
    async def test_document_changed_while_in_flight(self):
        client = GatedClient(refined_text="slow")
        orchestrator, doc, _, events = make_orchestrator(client)

        task = asyncio.create_task(orchestrator.refine_selection("opposite"))
        await client.entered.wait()
        doc.apply_format_command(0, 3, FormatCommand("bold"))
        client.release.set()

        with pytest.raises(StaleRangeError):
            await task
        assert doc.plain_text() == "The quick brown fox"
        assert events[-1].type == EditorEventType.REFINEMENT_FAILED
        assert not orchestrator.is_pending

    @pytest.mark.asyncio
    async def test_service_failure_keeps_instruction(self):
        client = FakeClient(error=RefinementFailed("model overloaded", 503))
        orchestrator, doc, tracker, events = make_orchestrator(client)

        with pytest.raises(RefinementFailed):
            await orchestrator.refine_selection("make it shorter")

        assert doc.version == 0
        assert orchestrator.last_instruction == "make it shorter"
        assert tracker.current is not None
        failed = events[-1]
        assert failed.type == EditorEventType.REFINEMENT_FAILED
        assert failed.data["instruction"] == "make it shorter"
        assert failed.data["notice"]["title"] == "Refinement failed"
        assert failed.data["notice"]["description"] == "model overloaded"


class TestRefinementResponse:

    def test_from_payload(self):
        response = RefinementResponse.from_payload({"refinedText": "x", "researchFindings": "y"})
        assert response.to_dict() == {"refinedText": "x", "researchFindings": "y"}
        assert RefinementResponse.from_payload({"refinedText": "x", "researchFindings": 3}).research_findings is None

    @pytest.mark.parametrize("payload", [{}, {"refinedText": None}, [], "text"])
    def test_unusable_payload(self, payload):
        with pytest.raises(RefinementFailed):
            RefinementResponse.from_payload(payload)


class TestRefinementClient:
    """The HTTP client against a local aiohttp application"""

    @staticmethod
    async def serve(handler):
        app = web.Application()
        app.router.add_post("/refine", handler)
        server = test_utils.TestServer(app)
        await server.start_server()
        return server

    @staticmethod
    def request():
        return RefinementRequest("quick", "shorter", "summary", "The quick brown fox")

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        async def handler(request):
            seen["body"] = await request.json()
            seen["auth"] = request.headers.get("Authorization")
            return web.json_response({"refinedText": "fast", "researchFindings": "notes"})

        server = await self.serve(handler)
        try:
            client = RefinementClient(str(server.make_url("/refine")), api_key="secret", timeout=5)
            response = await client.refine(self.request())
        finally:
            await server.close()

        assert response == RefinementResponse("fast", "notes")
        assert seen["body"]["selectedText"] == "quick"
        assert seen["body"]["fullDocument"] == "The quick brown fox"
        assert seen["auth"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_error_status_uses_service_message(self):
        async def handler(request):
            return web.json_response({"error": "Refinement model is not configured"}, status=500)

        server = await self.serve(handler)
        try:
            with pytest.raises(RefinementFailed) as info:
                await RefinementClient(str(server.make_url("/refine")), timeout=5).refine(self.request())
        finally:
            await server.close()
        assert info.value.status == 500
        assert "not configured" in str(info.value)

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        async def handler(request):
            return web.Response(text="<html>gateway</html>", status=502)

        server = await self.serve(handler)
        try:
            with pytest.raises(RefinementFailed) as info:
                await RefinementClient(str(server.make_url("/refine")), timeout=5).refine(self.request())
        finally:
            await server.close()
        assert info.value.status == 502

    @pytest.mark.asyncio
    async def test_missing_refined_text(self):
        async def handler(request):
            return web.json_response({"researchFindings": "only findings"})

        server = await self.serve(handler)
        try:
            with pytest.raises(RefinementFailed):
                await RefinementClient(str(server.make_url("/refine")), timeout=5).refine(self.request())
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_unreachable_service(self):
        server = await self.serve(lambda request: web.json_response({}))
        url = str(server.make_url("/refine"))
        await server.close()
        with pytest.raises(RefinementFailed):
            await RefinementClient(url, timeout=5).refine(self.request())
