# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Upload ingestion: file bytes + MIME type -> interchange markup and summary.

Plain text is split on blank lines into paragraphs. PDF and Word uploads are
accepted but their text is not extracted; they yield a placeholder paragraph
naming the file.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict

from .constants import ALLOWED_MIME_TYPES, MIME_DOC, MIME_DOCX, MIME_PDF, MIME_TEXT, UPLOAD_SUMMARY_LENGTH
from .errors import UnsupportedFileType
from .model.html_converter import plain_text_to_root, render_html

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    content: str
    summary: str
    file_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "summary": self.summary, "fileName": self.file_name}


def make_summary(text: str, limit: int = UPLOAD_SUMMARY_LENGTH) -> str:
    text = text.strip()
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def display_name(file_name: str) -> str:
    """File name without its extension"""
    base = os.path.basename(file_name or "") or "Untitled"
    stem, _ = os.path.splitext(base)
    return stem or base


def decode_text(data: bytes) -> str:
    """UTF-8 with a BOM tolerated; undecodable bytes become U+FFFD"""
    return data.decode("utf-8-sig", errors="replace")


def ingest_upload(data: bytes, mime_type: str, file_name: str) -> IngestResult:
    """
    Turn an uploaded file into document markup

    Args:
        data: Raw file bytes
        mime_type: Declared MIME type
        file_name: Original file name

    Returns:
        Markup content, a plain-text summary and the display file name

    Raises:
        UnsupportedFileType: MIME type not accepted (checked before parsing)
    """
    if mime_type not in ALLOWED_MIME_TYPES:
        raise UnsupportedFileType(mime_type)

    if mime_type == MIME_TEXT:
        text = decode_text(data)
    elif mime_type == MIME_PDF:
        text = f"PDF document: {file_name}\n\nThe text of PDF files is not extracted. Paste the content here to edit it."
    elif mime_type in (MIME_DOCX, MIME_DOC):
        text = f"Word document: {file_name}\n\nThe text of Word files is not extracted. Paste the content here to edit it."
    else:
        raise UnsupportedFileType(mime_type)

    content = render_html(plain_text_to_root(text))
    logger.info(f"Ingested {file_name} ({mime_type}, {len(data)} bytes)")
    return IngestResult(content=content, summary=make_summary(text), file_name=display_name(file_name))
