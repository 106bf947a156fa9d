# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
HTML <-> document tree conversion.

HTML is the interchange markup of the editor: uploads are turned into HTML,
the browser editor sends and receives HTML, and ``Document.serialized`` holds
the rendering produced by ``render_html``. The renderer is deterministic and
only emits the subset of tags the parser understands, so that parsing a
rendering yields a structurally equivalent tree.

PARSING:
========

1. A strict balance pass (``check_balanced``) rejects unbalanced or stray
   tags. Void tags and tags whose end tag HTML allows to omit are tolerated.
2. BeautifulSoup (``html.parser``) walks the markup and builds text blocks.
   Container tags such as ``div`` or ``section`` are transparent; loose inline
   content is wrapped in paragraphs.

When the balance pass fails the default policy recovers by keeping only the
text (a single unstructured paragraph); ``strict=True`` raises ``ParseError`` instead.
"""

import html
import logging
import re
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import Comment, Declaration, Doctype, ProcessingInstruction

from ..errors import ParseError
from .nodes import (
    ElementNode,
    NodeKind,
    TextNode,
    iter_text_blocks,
    make_root,
    normalize_block,
    prune_containers,
)

logger = logging.getLogger(__name__)

VOID_TAGS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "source", "track", "wbr",
})

# Tags whose end tag may be omitted in HTML
OPTIONAL_END_TAGS = frozenset({
    "html", "head", "body", "p", "li", "dt", "dd", "option",
    "thead", "tbody", "tfoot", "tr", "td", "th",
})

TRANSPARENT_TAGS = frozenset({
    "html", "body", "div", "section", "article", "main", "header", "footer",
    "aside", "nav", "figure", "table", "thead", "tbody", "tfoot", "tr", "td", "th",
    "dl", "dt", "dd",
})

SKIPPED_TAGS = frozenset({"head", "title", "script", "style", "template", "hr", "img"})

HEADING_TAGS = {f"h{level}": level for level in range(1, 7)}

TAG_MARKS = {
    "strong": "bold",
    "b": "bold",
    "em": "italic",
    "i": "italic",
    "u": "underline",
    "s": "strikethrough",
    "strike": "strikethrough",
    "del": "strikethrough",
    "code": "code",
}

BLOCK_TAGS = frozenset({"p", "blockquote", "pre", "ul", "ol", "li"}) | frozenset(HEADING_TAGS)

# Whitespace-only strings inside these tags are text, not layout
PRESERVE_WHITESPACE_TAGS = frozenset({
    "pre", "textarea", "p", "blockquote", "li", "span", "mark",
} | set(TAG_MARKS)) | frozenset(HEADING_TAGS)

MARKUP_PATTERN = re.compile(
    r"</?(p|h[1-6]|strong|b|em|i|u|s|strike|del|code|pre|blockquote|ul|ol|li|br|span|mark|div)\b[^>]*>",
    re.IGNORECASE,
)

_IGNORED_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)


class _BalanceChecker(HTMLParser):
    """Tracks open elements and raises ParseError on the first imbalance"""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.stack: List[str] = []

    def handle_starttag(self, tag, attrs):
        if tag in VOID_TAGS:
            return
        if tag in OPTIONAL_END_TAGS and self.stack and self.stack[-1] == tag:
            self.stack.pop()
        self.stack.append(tag)

    def handle_startendtag(self, tag, attrs):
        # <br/>, <span/>: nothing stays open
        return

    def handle_endtag(self, tag):
        if tag in VOID_TAGS:
            return
        if tag not in self.stack:
            raise ParseError(f"Unexpected closing tag </{tag}>")
        while self.stack:
            top = self.stack.pop()
            if top == tag:
                return
            if top not in OPTIONAL_END_TAGS:
                raise ParseError(f"Mismatched closing tag </{tag}>, expected </{top}>")

    def finish(self):
        self.close()
        unclosed = [tag for tag in self.stack if tag not in OPTIONAL_END_TAGS]
        if unclosed:
            raise ParseError(f"Unclosed tag <{unclosed[-1]}>")


def check_balanced(markup: str) -> None:
    """Raise ParseError when tags in ``markup`` are unbalanced"""
    checker = _BalanceChecker()
    checker.feed(markup)
    checker.finish()


def looks_like_markup(text: str) -> bool:
    """True when ``text`` carries tags the parser recognises"""
    return bool(MARKUP_PATTERN.search(text or ""))


def strip_tags(markup: str, separator: str = "\n") -> str:
    return BeautifulSoup(markup, "html.parser").get_text(separator)


def parse_html(markup: str, strict: bool = False) -> ElementNode:
    """
    Parse interchange markup into a document root

    Args:
        markup: HTML string (a full document or a body fragment)
        strict: Raise instead of recovering from malformed markup

    Returns:
        Root element node with normalized text blocks

    Raises:
        ParseError: If ``strict`` and the markup is malformed
    """
    if not isinstance(markup, str):
        raise ParseError(f"Markup must be a string, got {type(markup).__name__}")
    try:
        check_balanced(markup)
    except ParseError as e:
        if strict:
            raise
        logger.warning(f"Malformed markup, keeping text as a single block: {e}")
        return single_block_root(strip_tags(markup, " "))

    soup = BeautifulSoup(markup, "html.parser", preserve_whitespace_tags=PRESERVE_WHITESPACE_TAGS)
    container = soup.find("body") or soup
    root = make_root(_collect_blocks(container))
    return _normalize(root)


def parse_fragment(markup: str) -> List[ElementNode]:
    """Parse a markup fragment into top-level blocks (strict)"""
    return parse_html(markup, strict=True).children


def plain_text_to_root(text: str) -> ElementNode:
    """One paragraph per blank-line separated chunk; single newlines are hard breaks"""
    text = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    paragraphs = []
    for chunk in re.split(r"\n\s*\n", text):
        chunk = chunk.strip("\n")
        if chunk.strip():
            paragraphs.append(ElementNode(NodeKind.PARAGRAPH, [TextNode(chunk)]))
    return make_root(paragraphs)


def single_block_root(text: str) -> ElementNode:
    """Unstructured fallback: the whole text in one paragraph"""
    text = re.sub(r"\s+", " ", text or "").strip()
    return make_root([ElementNode(NodeKind.PARAGRAPH, [TextNode(text)] if text else [])])


def _normalize(root: ElementNode) -> ElementNode:
    for block, _ in iter_text_blocks(root):
        normalize_block(block)
    prune_containers(root)
    return root


def _style_value(tag: Tag, prop: str) -> Optional[str]:
    style = tag.get("style") or ""
    for declaration in style.split(";"):
        name, _, value = declaration.partition(":")
        if name.strip().lower() == prop:
            return value.strip() or None
    return None


def _block_attrs(tag: Tag) -> Dict[str, Any]:
    align = _style_value(tag, "text-align")
    if align and align.lower() in ("left", "center", "right", "justify"):
        return {"align": align.lower()}
    return {}


def _tag_marks(tag: Tag, marks: Dict[str, Any]) -> Dict[str, Any]:
    marks = dict(marks)
    name = tag.name
    if name in TAG_MARKS:
        marks[TAG_MARKS[name]] = True
    if name == "mark":
        marks["highlight"] = tag.get("data-color") or _style_value(tag, "background-color") or "yellow"
        return marks
    color = _style_value(tag, "color")
    if color:
        marks["color"] = color
    background = _style_value(tag, "background-color")
    if background:
        marks["highlight"] = background
    weight = (_style_value(tag, "font-weight") or "").lower()
    if weight in ("bold", "bolder", "600", "700", "800", "900"):
        marks["bold"] = True
    if (_style_value(tag, "font-style") or "").lower() == "italic":
        marks["italic"] = True
    decoration = (_style_value(tag, "text-decoration") or "").lower()
    if "underline" in decoration:
        marks["underline"] = True
    if "line-through" in decoration:
        marks["strikethrough"] = True
    return marks


def _inline_runs(node, marks: Dict[str, Any], runs: List[TextNode], keep_newlines: bool = False) -> None:
    if isinstance(node, _IGNORED_STRINGS):
        return
    if isinstance(node, NavigableString):
        text = str(node).replace("\r\n", "\n").replace("\r", "\n")
        if not keep_newlines:
            text = text.replace("\n", " ")
        runs.append(TextNode(text, marks))
        return
    if not isinstance(node, Tag) or node.name in SKIPPED_TAGS:
        return
    if node.name == "br":
        runs.append(TextNode("\n", marks))
        return
    child_marks = _tag_marks(node, marks)
    for child in node.children:
        _inline_runs(child, child_marks, runs, keep_newlines)


def _runs_of(nodes, keep_newlines: bool = False) -> List[TextNode]:
    runs: List[TextNode] = []
    for node in nodes:
        _inline_runs(node, {}, runs, keep_newlines)
    return runs


def _is_blank(nodes) -> bool:
    for node in nodes:
        if isinstance(node, _IGNORED_STRINGS):
            continue
        if isinstance(node, NavigableString):
            if str(node).strip():
                return False
        elif isinstance(node, Tag) and node.name not in SKIPPED_TAGS:
            return False
    return True


def _collect_blocks(container) -> List[ElementNode]:
    """Convert the children of ``container`` into blocks, wrapping loose inline content"""
    blocks: List[ElementNode] = []
    pending: list = []

    def flush():
        if pending and not _is_blank(pending):
            blocks.append(ElementNode(NodeKind.PARAGRAPH, _runs_of(pending)))
        pending.clear()

    for child in container.children:
        if isinstance(child, Tag) and child.name in SKIPPED_TAGS:
            continue
        if isinstance(child, Tag) and (child.name in BLOCK_TAGS or child.name in TRANSPARENT_TAGS):
            flush()
            blocks.extend(_convert_block(child))
        else:
            pending.append(child)
    flush()
    return blocks


def _convert_block(tag: Tag) -> List[ElementNode]:
    name = tag.name
    if name == "p":
        return [ElementNode(NodeKind.PARAGRAPH, _runs_of(tag.children), _block_attrs(tag))]
    if name in HEADING_TAGS:
        attrs = {"level": HEADING_TAGS[name], **_block_attrs(tag)}
        return [ElementNode(NodeKind.HEADING, _runs_of(tag.children), attrs)]
    if name == "blockquote":
        return _convert_quote(tag)
    if name == "pre":
        return [ElementNode(NodeKind.CODE, _runs_of(tag.children, keep_newlines=True))]
    if name in ("ul", "ol"):
        return [_convert_list(tag)]
    if name == "li":
        # <li> outside of a list
        return [ElementNode(NodeKind.PARAGRAPH, _runs_of(tag.children), _block_attrs(tag))]
    return _collect_blocks(tag)


def _has_block_children(tag: Tag) -> bool:
    return any(
        isinstance(child, Tag) and (child.name in BLOCK_TAGS or child.name in TRANSPARENT_TAGS)
        for child in tag.children
    )


def _convert_quote(tag: Tag) -> List[ElementNode]:
    outer_attrs = _block_attrs(tag)
    if not _has_block_children(tag):
        # Inline-only quote, whitespace included
        return [ElementNode(NodeKind.QUOTE, _runs_of(tag.children), outer_attrs)]
    inner = make_root(_collect_blocks(tag))
    quotes = []
    for block, _ in iter_text_blocks(inner):
        attrs = {"align": block.attrs["align"]} if block.attrs.get("align") else dict(outer_attrs)
        quotes.append(ElementNode(NodeKind.QUOTE, block.children, attrs))
    if not quotes:
        quotes.append(ElementNode(NodeKind.QUOTE, [], outer_attrs))
    return quotes


def _convert_list(tag: Tag) -> ElementNode:
    list_type = "number" if tag.name == "ol" else "bullet"
    items: List[ElementNode] = []
    _collect_list_items(tag, items)
    return ElementNode(NodeKind.LIST, items, {"listType": list_type})


def _collect_list_items(list_tag: Tag, items: List[ElementNode]) -> None:
    loose: list = []
    for child in list_tag.children:
        if isinstance(child, Tag) and child.name == "li":
            if not _is_blank(loose):
                items.append(ElementNode(NodeKind.LIST_ITEM, _runs_of(loose)))
            loose = []
            _convert_list_item(child, items)
        else:
            loose.append(child)
    if not _is_blank(loose):
        items.append(ElementNode(NodeKind.LIST_ITEM, _runs_of(loose)))


def _convert_list_item(li: Tag, items: List[ElementNode]) -> None:
    # Nested lists are flattened into following sibling items
    own = [child for child in li.children if not (isinstance(child, Tag) and child.name in ("ul", "ol"))]
    items.append(ElementNode(NodeKind.LIST_ITEM, _runs_of(own), _block_attrs(li)))
    for child in li.children:
        if isinstance(child, Tag) and child.name in ("ul", "ol"):
            _collect_list_items(child, items)


# Rendering

def _escape_text(text: str, in_code_block: bool) -> str:
    escaped = html.escape(text, quote=False)
    if in_code_block:
        return escaped
    return escaped.replace("\n", "<br>")


def render_run(run: TextNode, in_code_block: bool = False) -> str:
    out = _escape_text(run.text, in_code_block)
    marks = run.marks
    if marks.get("code") and not in_code_block:
        out = f"<code>{out}</code>"
    if marks.get("strikethrough"):
        out = f"<s>{out}</s>"
    if marks.get("underline"):
        out = f"<u>{out}</u>"
    if marks.get("italic"):
        out = f"<em>{out}</em>"
    if marks.get("bold"):
        out = f"<strong>{out}</strong>"
    if marks.get("highlight"):
        value = html.escape(marks["highlight"], quote=True)
        out = f'<mark data-color="{value}" style="background-color: {value}">{out}</mark>'
    if marks.get("color"):
        value = html.escape(marks["color"], quote=True)
        out = f'<span style="color: {value}">{out}</span>'
    return out


def _render_inlines(block: ElementNode) -> str:
    in_code = block.kind == NodeKind.CODE
    return "".join(render_run(run, in_code) for run in block.children)


def _align_attr(block: ElementNode) -> str:
    align = block.attrs.get("align")
    return f' style="text-align: {align}"' if align else ""


def render_block(block: ElementNode) -> str:
    kind = block.kind
    if kind == NodeKind.PARAGRAPH:
        return f"<p{_align_attr(block)}>{_render_inlines(block)}</p>"
    if kind == NodeKind.HEADING:
        level = block.attrs.get("level", 1)
        return f"<h{level}{_align_attr(block)}>{_render_inlines(block)}</h{level}>"
    if kind == NodeKind.QUOTE:
        return f"<blockquote{_align_attr(block)}>{_render_inlines(block)}</blockquote>"
    if kind == NodeKind.CODE:
        return f"<pre><code>{_render_inlines(block)}</code></pre>"
    if kind == NodeKind.LIST_ITEM:
        return f"<li{_align_attr(block)}>{_render_inlines(block)}</li>"
    if kind == NodeKind.LIST:
        tag = "ol" if block.attrs.get("listType") == "number" else "ul"
        items = "".join(render_block(child) for child in block.children)
        return f"<{tag}>{items}</{tag}>"
    raise ValueError(f"Cannot render node kind {kind.value}")


def render_html(root: ElementNode) -> str:
    """Deterministic HTML rendering of a document root"""
    return "".join(render_block(child) for child in root.children)
