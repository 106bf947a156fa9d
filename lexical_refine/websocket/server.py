#!/usr/bin/env python3
# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
WebSocket transport for editor sessions.

One ``WSEditorDoc`` per document name (taken from the connection path). Every
JSON message is handed to ``EditorSession.dispatch``; the result goes back to
the sender as a ``response`` message and the session events are broadcast to
all connections of the document:

- CONTENT_CHANGED     -> ``document-update`` (html, lexical, version, textLength)
- SELECTION_CHANGED   -> ``selection``
- REFINEMENT_*        -> ``refinement`` (status started / completed / failed)
- NOTICE              -> ``notice``

``query-snapshot`` is answered with the binary Loro snapshot of the Lexical
state. ``refine`` runs as a background task so the connection keeps serving
selection and keepalive messages while the service call is in flight.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

import click
import websockets
from websockets.asyncio.server import serve

from ..config import EditorConfig, configure_logging
from ..constants import (
    MESSAGE_DOCUMENT_UPDATE,
    MESSAGE_KEEPALIVE,
    MESSAGE_KEEPALIVE_ACK,
    MESSAGE_NOTICE,
    MESSAGE_QUERY_SNAPSHOT,
    MESSAGE_REFINE,
    MESSAGE_REFINEMENT,
    MESSAGE_RESPONSE,
    MESSAGE_SELECTION,
)
from ..events import EditorEvent, EditorEventType
from ..session import EditorSession

logger = logging.getLogger(__name__)

REFINEMENT_STATUS = {
    EditorEventType.REFINEMENT_STARTED: "started",
    EditorEventType.REFINEMENT_COMPLETED: "completed",
    EditorEventType.REFINEMENT_FAILED: "failed",
}


def conn_label(conn) -> str:
    address = getattr(conn, "remote_address", None)
    return f"conn-{address[0]}:{address[1]}" if address else "unknown"


class WSEditorDoc:
    """
    An editor session shared by the websocket connections of one document
    """

    def __init__(self, name: str, config: Optional[EditorConfig] = None, client: Any = None):
        self.name = name
        self.session = EditorSession(name, client=client, config=config)
        self.conns: set = set()
        self.outbox: List[Dict[str, Any]] = []
        self.refine_tasks: set = set()
        self.flush_tasks: set = set()
        self._flush_lock = asyncio.Lock()
        self.session.events.subscribe(self._on_event)

    def _on_event(self, event: EditorEvent) -> None:
        """Queue the broadcast for an event and schedule a flush"""
        self._queue(event)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.flush())
        self.flush_tasks.add(task)
        task.add_done_callback(self.flush_tasks.discard)

    def _queue(self, event: EditorEvent) -> None:
        if event.type == EditorEventType.CONTENT_CHANGED:
            self.outbox.append(self.document_update())
        elif event.type == EditorEventType.SELECTION_CHANGED:
            self.outbox.append({"type": MESSAGE_SELECTION, "docId": self.name, **event.data})
        elif event.type in REFINEMENT_STATUS:
            self.outbox.append({
                "type": MESSAGE_REFINEMENT,
                "docId": self.name,
                "status": REFINEMENT_STATUS[event.type],
                **event.data,
            })
        elif event.type == EditorEventType.NOTICE:
            self.outbox.append({"type": MESSAGE_NOTICE, "docId": self.name, **event.data})

    def document_update(self) -> Dict[str, Any]:
        return {"type": MESSAGE_DOCUMENT_UPDATE, "docId": self.name, **self.session.document_state()}

    async def flush(self) -> None:
        """Send queued broadcasts in the order their events were published"""
        async with self._flush_lock:
            messages, self.outbox = self.outbox, []
            for message in messages:
                await self.broadcast(message)

    async def broadcast(self, message: Dict[str, Any]) -> None:
        data = json.dumps(message)
        for conn in list(self.conns):
            try:
                await conn.send(data)
            except websockets.exceptions.ConnectionClosed:
                logger.debug(f"[Server] Skipping closed connection {conn_label(conn)} for {self.name}")


docs: Dict[str, WSEditorDoc] = {}

# Shared by every document created by get_doc
server_config: Optional[EditorConfig] = None
server_client: Any = None


def configure(config: Optional[EditorConfig] = None, client: Any = None) -> None:
    """Set the configuration and refinement client used for new documents"""
    global server_config, server_client
    server_config = config
    server_client = client


def clear_docs():
    """Clear all cached documents - useful for server restarts"""
    docs.clear()
    logger.debug("[Server] Cleared document cache")


def get_doc(docname: str) -> WSEditorDoc:
    if docname not in docs:
        docs[docname] = WSEditorDoc(docname, server_config, server_client)
    return docs[docname]


def close_conn(doc: WSEditorDoc, conn):
    if conn in doc.conns:
        doc.conns.remove(conn)
        logger.info(f"[Server] Connection closed: {conn_label(conn)} <- document: {doc.name} "
                    f"({len(doc.conns)} remaining)")
    else:
        logger.warning(f"[Server] Tried to clean up connection {conn_label(conn)} but it wasn't in doc.conns")


async def message_listener(conn, doc: WSEditorDoc, message):
    try:
        if isinstance(message, bytes):
            try:
                message = message.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning(f"[Server] Ignoring binary message from {conn_label(conn)}: {len(message)} bytes")
                return

        if not message:
            return

        try:
            message_data = json.loads(message)
        except json.JSONDecodeError as e:
            logger.warning(f"[Server] JSON parse error: {e}")
            return

        if not isinstance(message_data, dict):
            logger.warning(f"[Server] Ignoring non-object message from {conn_label(conn)}")
            return

        message_type = message_data.get("type", "")
        logger.debug(f"[Server] Received message type: {message_type} for doc: {doc.name}")

        if message_type == MESSAGE_QUERY_SNAPSHOT:
            await handle_query_snapshot(conn, doc, message_data)
        elif message_type == MESSAGE_KEEPALIVE:
            await handle_keepalive(conn, doc, message_data)
        elif message_type == MESSAGE_REFINE:
            task = asyncio.create_task(handle_request(conn, doc, message_data))
            doc.refine_tasks.add(task)
            task.add_done_callback(doc.refine_tasks.discard)
        else:
            await handle_request(conn, doc, message_data)

    except Exception as e:
        logger.error(f"[Server] Message handling error: {e}")


async def handle_request(conn, doc: WSEditorDoc, message_data: Dict[str, Any]):
    """Run one session operation and answer the sender"""
    message_type = message_data.get("type", "")
    result = await doc.session.dispatch(message_type, message_data)
    await doc.flush()
    response = {**result, "type": MESSAGE_RESPONSE, "request": message_type, "docId": doc.name}
    if "requestId" in message_data:
        response["requestId"] = message_data["requestId"]
    try:
        await conn.send(json.dumps(response))
    except websockets.exceptions.ConnectionClosed:
        logger.debug(f"[Server] {conn_label(conn)} closed before the {message_type} response")


async def handle_query_snapshot(conn, doc: WSEditorDoc, message_data):
    try:
        snapshot = doc.session.document.get_snapshot()
        logger.debug(f"[Server] Sending snapshot for {doc.name}: {len(snapshot)} bytes")
        await conn.send(snapshot)
    except Exception as e:
        logger.error(f"[Server] Error handling query-snapshot: {e}")


async def handle_keepalive(conn, doc: WSEditorDoc, message_data):
    """Acknowledge a client keepalive"""
    ping_id = message_data.get("ping_id", "unknown")
    keepalive_response = {
        "type": MESSAGE_KEEPALIVE_ACK,
        "doc_id": doc.name,
        "ping_id": ping_id,
        "server_timestamp": time.time(),
        "acknowledged": True,
    }
    try:
        await conn.send(json.dumps(keepalive_response))
    except Exception as e:
        # keepalive failure shouldn't break the connection
        logger.error(f"[Server] Error handling keepalive: {e}")


def doc_name_from_path(path: Optional[str]) -> str:
    doc_name = path.strip("/").split("?")[0] if path else ""
    return doc_name or "default"


async def setup_ws_connection(conn, path: str):
    doc_name = doc_name_from_path(path)
    conn_id = conn_label(conn)
    doc = get_doc(doc_name)
    doc.conns.add(conn)
    logger.info(f"[Server] Connection established: {conn_id} -> document: {doc_name} ({len(doc.conns)} total)")

    try:
        await conn.send(json.dumps(doc.document_update()))

        async for message in conn:
            await message_listener(conn, doc, message)

    except websockets.exceptions.ConnectionClosed:
        logger.debug(f"WebSocket connection {conn_id} closed")
    except Exception as e:
        logger.error(f"WebSocket connection {conn_id} error: {e}")
    finally:
        close_conn(doc, conn)


class EditorWebSocketServer:
    """WebSocket server serving editor sessions"""

    def __init__(self, host: str = "localhost", port: int = 3002,
                 config: Optional[EditorConfig] = None, client: Any = None):
        self.host = host
        self.port = port
        self.config = config or EditorConfig(host=host, port=port)
        self.client = client
        self.server = None
        self.running = False

    async def start(self):
        """Start the WebSocket server and serve until it is closed"""
        self.running = True
        clear_docs()
        configure(self.config, self.client)

        async def handler(websocket):
            await setup_ws_connection(websocket, websocket.request.path)

        self.server = await serve(handler, self.host, self.port)
        logger.info(f"EditorWebSocketServer running on ws://{self.host}:{self.port}")

        try:
            await self.server.wait_closed()
        finally:
            await self.stop()

    async def stop(self):
        """Stop the WebSocket server"""
        if not self.running:
            return
        self.running = False

        for doc in docs.values():
            for task in list(doc.refine_tasks):
                task.cancel()

        if self.server:
            self.server.close()
            await self.server.wait_closed()
            logger.info("WebSocket server stopped")


@click.command()
@click.option("--host", default=None, help="Host to bind the websocket server to")
@click.option("--port", default=None, type=int, help="Port to listen on")
@click.option("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ERROR)")
@click.option("--endpoint", default=None, help="URL of the refinement service")
def main(host: Optional[str], port: Optional[int], log_level: Optional[str], endpoint: Optional[str]):
    """Serve editor sessions over websockets"""
    config = EditorConfig.from_env()
    if host:
        config.host = host
    if port:
        config.port = port
    if log_level:
        config.log_level = log_level
    if endpoint:
        config.refine_endpoint = endpoint
    configure_logging(config.log_level)

    server = EditorWebSocketServer(config.host, config.port, config=config)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Server shutdown complete")


if __name__ == "__main__":
    main()
