# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""Export of the session document as plain text or a standalone HTML file."""

import html
import re
from dataclasses import dataclass
from typing import Any, Dict

from .errors import EditorError
from .model.document import Document

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>{title}</title>
  <style>
    body {{
      font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
      max-width: 800px;
      margin: 0 auto;
      padding: 2rem;
      line-height: 1.6;
    }}
  </style>
</head>
<body>
{content}
</body>
</html>"""

FORMATS = {
    "txt": "text/plain; charset=utf-8",
    "html": "text/html; charset=utf-8",
}


@dataclass
class ExportArtifact:
    filename: str
    media_type: str
    data: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "mediaType": self.media_type,
            "content": self.data.decode("utf-8"),
        }


def export_plain_text(doc: Document) -> str:
    """One line per block, blank lines collapsed"""
    text = doc.plain_text("\n")
    return re.sub(r"\n+", "\n", text).strip()


def export_html_document(markup: str, title: str) -> str:
    return HTML_TEMPLATE.format(title=html.escape(title), content=markup)


def export_document(doc: Document, fmt: str) -> ExportArtifact:
    """
    Raises:
        EditorError: Unknown export format
    """
    fmt = (fmt or "").lower().lstrip(".")
    if fmt == "txt":
        data = export_plain_text(doc)
    elif fmt == "html":
        data = export_html_document(doc.serialized, doc.file_name)
    else:
        raise EditorError(f"Unknown export format: {fmt}. Use txt or html")
    return ExportArtifact(f"{doc.file_name}.{fmt}", FORMATS[fmt], data.encode("utf-8"))
