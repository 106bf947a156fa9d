# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Test suite for the websocket transport.

Most tests drive ``message_listener`` with an in-memory connection; the last
one goes through a real websockets server on an ephemeral port.
"""

import asyncio
import json

import pytest
from websockets.asyncio.client import connect
from websockets.asyncio.server import serve

from lexical_refine.model.lexical_converter import LexicalTreeConverter, from_lexical_state
from lexical_refine.model.nodes import node_text
from lexical_refine.refinement import RefinementResponse
from lexical_refine.websocket import server as ws_server
from lexical_refine.websocket.server import (
    clear_docs,
    configure,
    doc_name_from_path,
    get_doc,
    message_listener,
    setup_ws_connection,
)


class EchoClient:
    async def refine(self, request):
        return RefinementResponse(request.selected_text.upper())


class FakeConnection:
    """Records sent frames and replays incoming ones"""

    def __init__(self, incoming=None, port=5000):
        self.remote_address = ("127.0.0.1", port)
        self.incoming = list(incoming or [])
        self.sent = []

    async def send(self, data):
        self.sent.append(data)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.incoming:
            yield message

    def messages(self):
        return [json.loads(frame) for frame in self.sent if isinstance(frame, str)]

    def of_type(self, message_type):
        return [message for message in self.messages() if message["type"] == message_type]


@pytest.fixture(autouse=True)
def fresh_server_state():
    clear_docs()
    configure(client=EchoClient())
    yield
    clear_docs()
    configure()


def message(message_type, **data):
    return json.dumps({"type": message_type, **data})


async def send(conn, doc, message_type, **data):
    await message_listener(conn, doc, message(message_type, **data))


def test_doc_name_from_path():
    assert doc_name_from_path("/my-doc") == "my-doc"
    assert doc_name_from_path("/my-doc?token=x") == "my-doc"
    assert doc_name_from_path("/") == "default"
    assert doc_name_from_path(None) == "default"


def test_get_doc_caches_per_name():
    doc = get_doc("cached")
    assert get_doc("cached") is doc
    assert ws_server.docs["cached"].session.doc_id == "cached"
    assert isinstance(doc.session.client, EchoClient)


class TestMessageListener:

    @pytest.mark.asyncio
    async def test_response_follows_document_update(self):
        doc = get_doc("doc")
        conn = FakeConnection()
        doc.conns.add(conn)

        await send(conn, doc, "load-document", content="<p>Hello world</p>", requestId="r1")

        messages = conn.messages()
        assert [m["type"] for m in messages] == ["document-update", "response"]
        assert messages[0]["html"] == "<p>Hello world</p>"
        response = messages[1]
        assert response["request"] == "load-document"
        assert response["requestId"] == "r1"
        assert response["success"] is True
        assert response["docId"] == "doc"

    @pytest.mark.asyncio
    async def test_updates_are_broadcast_to_every_connection(self):
        doc = get_doc("shared")
        sender, watcher = FakeConnection(port=1), FakeConnection(port=2)
        doc.conns.add(sender)
        doc.conns.add(watcher)

        await send(sender, doc, "load-document", content="<p>Hello world</p>")
        await send(sender, doc, "format", command="bold", **{"from": 0, "to": 5})

        updates = watcher.of_type("document-update")
        assert updates[-1]["html"] == "<p><strong>Hello</strong> world</p>"
        assert updates[-1]["version"] == 2
        assert watcher.of_type("response") == []
        assert len(sender.of_type("response")) == 2

    @pytest.mark.asyncio
    async def test_errors_become_notices(self):
        doc = get_doc("errors")
        conn = FakeConnection()
        doc.conns.add(conn)

        await send(conn, doc, "replace", text="x", **{"from": 0, "to": 50})

        notice = conn.of_type("notice")[0]
        assert notice["title"] == "Invalid selection"
        response = conn.of_type("response")[0]
        assert response["success"] is False
        assert response["notice"]["kind"] == "InvalidRangeError"

    @pytest.mark.asyncio
    async def test_refine_runs_in_background(self):
        doc = get_doc("refine")
        conn = FakeConnection()
        doc.conns.add(conn)

        await send(conn, doc, "load-document", content="<p>Hello world</p>")
        await send(conn, doc, "selection-change", **{"from": 6, "to": 11})
        assert conn.of_type("selection")[-1]["selection"]["text"] == "world"

        await send(conn, doc, "refine", prompt="shout")
        assert doc.refine_tasks
        await asyncio.gather(*list(doc.refine_tasks))

        statuses = [m["status"] for m in conn.of_type("refinement")]
        assert statuses == ["started", "completed"]
        response = conn.of_type("response")[-1]
        assert response["request"] == "refine"
        assert response["refinedText"] == "WORLD"
        assert conn.of_type("document-update")[-1]["html"] == "<p>Hello WORLD</p>"

    @pytest.mark.asyncio
    async def test_keepalive_is_acknowledged(self):
        doc = get_doc("alive")
        conn = FakeConnection()

        await send(conn, doc, "keepalive", ping_id=42)

        ack = conn.messages()[0]
        assert ack["type"] == "keepalive_ack"
        assert ack["ping_id"] == 42
        assert ack["doc_id"] == "alive"
        assert ack["acknowledged"] is True

    @pytest.mark.asyncio
    async def test_query_snapshot_sends_loro_bytes(self):
        doc = get_doc("snap")
        conn = FakeConnection()
        await send(conn, doc, "load-document", content="<h1>Snapshot</h1>")

        await send(conn, doc, "query-snapshot")

        snapshot = conn.sent[-1]
        assert isinstance(snapshot, bytes)
        state = LexicalTreeConverter.from_snapshot(snapshot).export_to_lexical_state()
        assert node_text(from_lexical_state(state)) == "Snapshot"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", "", b"\xff\xfe"])
    async def test_unusable_frames_are_ignored(self, raw):
        doc = get_doc("noise")
        conn = FakeConnection()
        await message_listener(conn, doc, raw)
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_utf8_bytes_are_accepted(self):
        doc = get_doc("bytes")
        conn = FakeConnection()
        await message_listener(conn, doc, message("query-document").encode("utf-8"))
        assert conn.of_type("response")[0]["document"]["doc_id"] == "bytes"


class TestConnections:

    @pytest.mark.asyncio
    async def test_setup_ws_connection_lifecycle(self):
        conn = FakeConnection([message("load-document", content="<p>Hi</p>")])

        await setup_ws_connection(conn, "/lifecycle")

        doc = ws_server.docs["lifecycle"]
        types = [m["type"] for m in conn.messages()]
        assert types == ["document-update", "document-update", "response"]
        assert conn.messages()[0]["html"] == "<p></p>"
        assert doc.conns == set()

    @pytest.mark.asyncio
    async def test_real_websocket_round_trip(self):
        async def handler(websocket):
            await setup_ws_connection(websocket, websocket.request.path)

        async with serve(handler, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            async with connect(f"ws://127.0.0.1:{port}/live") as websocket:
                initial = json.loads(await websocket.recv())
                assert initial["type"] == "document-update"
                assert initial["docId"] == "live"

                await websocket.send(message("load-document", content="<p>Over the wire</p>"))
                update = json.loads(await websocket.recv())
                response = json.loads(await websocket.recv())

        assert update["html"] == "<p>Over the wire</p>"
        assert response["type"] == "response"
        assert response["success"] is True
