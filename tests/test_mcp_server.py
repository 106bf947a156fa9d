# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Test suite for the MCP tools.

Calls the tool handlers directly and checks the JSON carried by the returned
TextContent.
"""

import json

import pytest

from lexical_refine.mcp.server import RefineMCPServer
from lexical_refine.refinement import RefinementResponse
from lexical_refine.session import SessionManager


class EchoClient:
    async def refine(self, request):
        return RefinementResponse(f"[{request.selected_text}]", "no findings")


@pytest.fixture
def mcp_server():
    return RefineMCPServer(SessionManager(client=EchoClient()))


async def call(mcp_server, name, **arguments):
    result = await mcp_server.call_tool(name, arguments)
    assert len(result) == 1
    assert result[0].type == "text"
    return json.loads(result[0].text)


async def load(mcp_server, content="<p>Hello</p><p>world</p>", doc_id="doc"):
    data = await call(mcp_server, "load_document", doc_id=doc_id, content=content, file_name="memo")
    assert data["success"] is True
    return data


class TestToolListing:

    def test_server_name(self, mcp_server):
        assert mcp_server.server.name == "lexical-refine"

    def test_tools(self, mcp_server):
        tools = {tool.name: tool for tool in mcp_server.list_tools()}
        assert set(tools) == {
            "load_document",
            "get_document",
            "get_text",
            "replace_range",
            "format_range",
            "refine_range",
            "export_document",
        }
        assert tools["replace_range"].inputSchema["required"] == ["doc_id", "from", "to", "text"]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, mcp_server):
        data = await call(mcp_server, "delete_everything")
        assert data == {"success": False, "error": "Unknown tool: delete_everything"}


class TestDocumentTools:

    @pytest.mark.asyncio
    async def test_load_and_get_document(self, mcp_server):
        data = await load(mcp_server)
        assert data["doc_id"] == "doc"
        assert data["document"]["html"] == "<p>Hello</p><p>world</p>"
        assert "type" not in data

        data = await call(mcp_server, "get_document", doc_id="doc")
        assert data["document"]["textLength"] == 10
        assert data["document"]["fileName"] == "memo"

    @pytest.mark.asyncio
    async def test_load_without_content_gives_empty_document(self, mcp_server):
        await load(mcp_server)
        data = await call(mcp_server, "load_document", doc_id="doc")
        assert data["document"]["html"] == "<p></p>"

    @pytest.mark.asyncio
    async def test_documents_are_separate(self, mcp_server):
        await load(mcp_server, "<p>one</p>", doc_id="a")
        await load(mcp_server, "<p>two</p>", doc_id="b")
        data = await call(mcp_server, "get_text", doc_id="a")
        assert data["text"] == "one"

    @pytest.mark.asyncio
    async def test_get_text(self, mcp_server):
        await load(mcp_server)
        data = await call(mcp_server, "get_text", doc_id="doc")
        assert data["text"] == "Hello\nworld"
        assert data["to"] == 10

        data = await call(mcp_server, "get_text", doc_id="doc", **{"from": 2, "to": 7})
        assert data["text"] == "llo\nwo"

    @pytest.mark.asyncio
    async def test_get_text_out_of_range(self, mcp_server):
        await load(mcp_server)
        data = await call(mcp_server, "get_text", doc_id="doc", **{"from": 0, "to": 99})
        assert data["success"] is False
        assert data["notice"]["kind"] == "InvalidRangeError"

    @pytest.mark.asyncio
    async def test_export(self, mcp_server):
        await load(mcp_server)
        data = await call(mcp_server, "export_document", doc_id="doc", format="txt")
        assert data["export"]["filename"] == "memo.txt"
        assert data["export"]["content"] == "Hello\nworld"


class TestEditingTools:

    @pytest.mark.asyncio
    async def test_replace_range(self, mcp_server):
        await load(mcp_server)
        data = await call(mcp_server, "replace_range", doc_id="doc", text="<em>there</em>", **{"from": 5, "to": 10})
        assert data["success"] is True
        assert data["document"]["html"] == "<p>Hello</p><p><em>there</em></p>"

    @pytest.mark.asyncio
    async def test_replace_range_stale_version(self, mcp_server):
        await load(mcp_server)
        data = await call(mcp_server, "replace_range", doc_id="doc", text="x", version=0, **{"from": 0, "to": 1})
        assert data["success"] is False
        assert data["notice"]["title"] == "Selection is out of date"

    @pytest.mark.asyncio
    async def test_format_range(self, mcp_server):
        await load(mcp_server)
        data = await call(mcp_server, "format_range", doc_id="doc", command="heading", value=1, **{"from": 0, "to": 0})
        assert data["document"]["html"] == "<h1>Hello</h1><p>world</p>"

        data = await call(mcp_server, "format_range", doc_id="doc", command="shiny", **{"from": 0, "to": 2})
        assert data["success"] is False
        assert data["notice"]["kind"] == "InvalidCommandError"

    @pytest.mark.asyncio
    async def test_refine_range(self, mcp_server):
        await load(mcp_server)
        data = await call(mcp_server, "refine_range", doc_id="doc", prompt="bracket it", **{"from": 0, "to": 5})
        assert data["success"] is True
        assert data["refinedText"] == "[Hello]"
        assert data["researchFindings"] == "no findings"
        assert data["document"]["html"] == "<p>[Hello]</p><p>world</p>"

    @pytest.mark.asyncio
    async def test_refine_range_needs_text(self, mcp_server):
        await load(mcp_server)
        data = await call(mcp_server, "refine_range", doc_id="doc", prompt="bracket it", **{"from": 3, "to": 3})
        assert data["success"] is False
        assert data["error"] == "The range does not select any text"

    @pytest.mark.asyncio
    async def test_refine_range_needs_prompt(self, mcp_server):
        await load(mcp_server)
        data = await call(mcp_server, "refine_range", doc_id="doc", prompt="  ", **{"from": 0, "to": 5})
        assert data["success"] is False
        assert data["notice"]["title"] == "Missing prompt"
