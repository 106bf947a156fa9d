# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""Shared constants for the editor session backend."""

# Loro tree container used when publishing the Lexical state to clients
DEFAULT_TREE_NAME = "lexical-tree"

DEFAULT_FILE_NAME = "Untitled"

# Refinement request context (documentSummary fallback length)
SUMMARY_EXCERPT_LENGTH = 1000

# Upload summary length
UPLOAD_SUMMARY_LENGTH = 200

DEFAULT_REFINE_ENDPOINT = "http://localhost:54321/functions/v1/refine-text"

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3002

MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_DOC = "application/msword"
MIME_TEXT = "text/plain"

ALLOWED_MIME_TYPES = (MIME_PDF, MIME_DOCX, MIME_TEXT, MIME_DOC)

# Message types exchanged with the browser editor
MESSAGE_LOAD_DOCUMENT = "load-document"
MESSAGE_UPLOAD = "upload"
MESSAGE_QUERY_DOCUMENT = "query-document"
MESSAGE_QUERY_SNAPSHOT = "query-snapshot"
MESSAGE_SELECTION_CHANGE = "selection-change"
MESSAGE_FORMAT = "format"
MESSAGE_REPLACE = "replace"
MESSAGE_REFINE = "refine"
MESSAGE_EXPORT = "export"
MESSAGE_KEEPALIVE = "keepalive"

# Messages sent back to the browser editor
MESSAGE_DOCUMENT_UPDATE = "document-update"
MESSAGE_SELECTION = "selection"
MESSAGE_NOTICE = "notice"
MESSAGE_REFINEMENT = "refinement"
MESSAGE_RESPONSE = "response"
MESSAGE_KEEPALIVE_ACK = "keepalive_ack"
