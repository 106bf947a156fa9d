# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Test suite for the Replacement Engine.

The engine must change exactly the addressed text, keep formatting outside
the range, keep the length arithmetic consistent and leave the document
untouched when it rejects an edit.
"""

import pytest

from lexical_refine.errors import InvalidRangeError, ParseError, StaleRangeError
from lexical_refine.events import EditorEventType
from lexical_refine.model import document
from lexical_refine.model.document import Document
from lexical_refine.model.html_converter import parse_html
from lexical_refine.model.nodes import node_signature
from lexical_refine.replacement import ReplacementEngine, range_bounds, replace
from lexical_refine.selection import SelectionRange


@pytest.fixture
def engine():
    return ReplacementEngine()


def replaced(markup, start, end, text, **kwargs):
    doc = Document.load(markup)
    ReplacementEngine().replace(doc, (start, end), text, **kwargs)
    return doc


MIXED = (
    "<h2>Title</h2><p></p><p><strong>Bold</strong> and <em>it</em></p>"
    "<ul><li>one</li><li>two</li></ul><blockquote>quote</blockquote>"
    "<pre><code>x = 1\ny</code></pre><p>a<br>b</p>"
)


def all_ranges(markup):
    length = Document.load(markup).text_length()
    return [(start, end) for start in range(length + 1) for end in range(start, length + 1)]


def reloads_unchanged(doc):
    return node_signature(parse_html(doc.serialized)) == node_signature(doc.root)


class TestPlainTextReplacement:

    @pytest.mark.parametrize("markup,start,end,text", [
        ("<p>Hello world</p>", 6, 11, "there"),
        ("<p>Hello world</p>", 0, 0, ">> "),
        ("<p>Hello world</p>", 11, 11, "!"),
        ("<p>Hello</p><p>World</p>", 3, 7, "p w"),
        ("<h1>Title</h1><ul><li>one</li><li>two</li></ul><p>end</p>", 2, 10, ""),
        ("<p>a</p><p></p><p>b</p>", 0, 2, "xyz"),
    ])
    def test_text_changes_exactly_in_range(self, engine, markup, start, end, text):
        doc = Document.load(markup)
        before = doc.plain_text("")
        engine.replace(doc, SelectionRange(start, end), text)
        assert doc.plain_text("") == before[:start] + text + before[end:]
        assert doc.text_length() == len(before) - (end - start) + len(text)

    def test_blocks_merge_when_range_spans_them(self):
        doc = replaced("<p>Hello</p><p>World</p>", 3, 7, "p w")
        assert doc.serialized == "<p>Help wrld</p>"

    def test_formatting_outside_range_is_kept(self):
        doc = replaced("<p><strong>Hello</strong> world, <em>again</em></p>", 6, 11, "there")
        assert doc.serialized == "<p><strong>Hello</strong> there, <em>again</em></p>"

    def test_replacement_takes_marks_of_replaced_text(self):
        doc = replaced("<p><strong>Hello</strong> world</p>", 0, 5, "Howdy")
        assert doc.serialized == "<p><strong>Howdy</strong> world</p>"

    def test_insertion_takes_marks_of_preceding_run(self):
        doc = replaced("<p><strong>Hello</strong> world</p>", 5, 5, "!")
        assert doc.serialized == "<p><strong>Hello!</strong> world</p>"

    def test_insertion_at_block_boundary_goes_to_next_block(self):
        doc = replaced("<p>ab</p><p>cd</p>", 2, 2, "X")
        assert doc.serialized == "<p>ab</p><p>Xcd</p>"

    def test_delete(self):
        assert replaced("<p>Hello world</p>", 5, 11, "").serialized == "<p>Hello</p>"

    def test_delete_everything_leaves_empty_start_block(self):
        doc = replaced("<h1>ab</h1><p>cd</p>", 0, 4, "")
        assert doc.text_length() == 0
        assert doc.serialized == "<h1></h1>"

    def test_heading_kind_of_start_block_is_kept(self):
        doc = replaced("<h2>Title</h2><p>Body</p>", 3, 6, "")
        assert doc.serialized == "<h2>Titody</h2>"

    def test_plain_text_with_angle_brackets(self):
        doc = replaced("<p>x</p>", 0, 1, "a < b > c")
        assert doc.plain_text() == "a < b > c"
        assert doc.serialized == "<p>a &lt; b &gt; c</p>"


class TestMarkupReplacement:

    def test_single_block_fragment_is_inlined(self):
        doc = replaced("<p>Hello world</p>", 6, 11, "<strong>there</strong>")
        assert doc.serialized == "<p>Hello <strong>there</strong></p>"

    def test_multi_block_fragment_splits_host(self):
        doc = replaced("<p>Hello world</p>", 5, 6, "<p>A</p><h2>B</h2>")
        assert doc.serialized == "<p>HelloA</p><h2>Bworld</h2>"
        assert doc.text_length() == 12

    def test_fragment_inside_list_becomes_items(self):
        doc = replaced("<ul><li>one</li><li>two</li></ul>", 3, 3, "<p>A</p><p>B</p>")
        assert doc.serialized == "<ul><li>one</li><li>A</li><li>Btwo</li></ul>"

    def test_unparseable_markup_is_inserted_as_text(self):
        doc = replaced("<p>x</p>", 0, 1, "<em>oops")
        assert doc.plain_text() == "<em>oops"

    def test_forced_markup_must_parse(self):
        doc = Document.load("<p>x</p>")
        with pytest.raises(ParseError):
            ReplacementEngine().replace(doc, (0, 1), "<em>oops", as_markup=True)
        assert doc.serialized == "<p>x</p>"

    def test_markup_can_be_forbidden(self):
        doc = replaced("<p>x</p>", 0, 1, "<b>literal</b>", as_markup=False)
        assert doc.plain_text() == "<b>literal</b>"


class TestRejectedReplacement:

    @pytest.mark.parametrize("start,end", [(-1, 2), (3, 1), (0, 99), (None, 1)])
    def test_invalid_range_leaves_document_untouched(self, engine, start, end):
        doc = Document.load("<p>Hello</p>")
        with pytest.raises(InvalidRangeError):
            engine.replace(doc, (start, end), "x")
        assert doc.serialized == "<p>Hello</p>"
        assert doc.version == 0

    def test_stale_version(self, engine):
        doc = Document.load("<p>Hello</p>")
        engine.replace(doc, (0, 1), "J")
        with pytest.raises(StaleRangeError):
            engine.replace(doc, (0, 1), "M", expected_version=0)
        assert doc.plain_text() == "Jello"

    def test_matching_version_is_accepted(self, engine):
        doc = Document.load("<p>Hello</p>")
        engine.replace(doc, (0, 1), "J", expected_version=0)
        assert doc.version == 1

    def test_non_string_content(self, engine):
        doc = Document.load("<p>Hello</p>")
        with pytest.raises(ParseError):
            engine.replace(doc, (0, 1), 42)


class TestReplacementEvents:

    def test_content_changed_is_emitted(self):
        events = []
        doc = Document.load("<p>Hello</p>", event_handler=lambda t, d: events.append((t, d)))
        replace(doc, {"from": 0, "to": 5}, "Bye")
        assert [t for t, _ in events] == [EditorEventType.CONTENT_CHANGED]
        assert events[0][1]["action"] == "replace"
        assert events[0][1]["inserted"] == 3

    def test_identical_replacement_is_a_noop(self):
        doc = Document.load("<p>Hello</p>")
        replace(doc, (0, 5), "Hello")
        assert doc.version == 0


def test_range_bounds_shapes():
    assert range_bounds(SelectionRange(1, 2)) == (1, 2)
    assert range_bounds({"from": 3, "to": 4}) == (3, 4)
    assert range_bounds((5, 6)) == (5, 6)
    assert range_bounds is document.range_bounds


class TestEditedDocuments:
    """Every range of a document mixing all block kinds"""

    def test_mixed_document_offsets(self):
        doc = Document.load(MIXED)
        assert doc.plain_text("") == "TitleBold and itonetwoquotex = 1\nya\nb"
        assert doc.text_between(10, 13) == "and"

    @pytest.mark.parametrize("text,inserted", [
        ("", 0),
        ("Z", 1),
        ("<b>B</b>", 1),
        ("<p>x</p><p>y</p>", 2),
    ])
    def test_edits_survive_serialization(self, text, inserted):
        for start, end in all_ranges(MIXED):
            doc = Document.load(MIXED)
            before = doc.text_length()
            replace(doc, (start, end), text)
            assert doc.text_length() == before - (end - start) + inserted, (start, end)
            assert reloads_unchanged(doc), (start, end, doc.serialized)

    def test_replacing_a_range_with_its_own_text(self):
        for start, end in all_ranges(MIXED):
            doc = Document.load(MIXED)
            text = doc.plain_text("")
            replace(doc, (start, end), doc.text_between(start, end))
            assert doc.plain_text("") == text, (start, end)
            assert reloads_unchanged(doc), (start, end, doc.serialized)

    def test_deleted_word_leaves_whitespace_run(self):
        doc = replaced(MIXED, 10, 13, "")
        assert "<p><strong>Bold</strong>  <em>it</em></p>" in doc.serialized
        assert reloads_unchanged(doc)

    def test_quote_replaced_by_whitespace(self):
        doc = replaced(MIXED, 22, 27, " ")
        assert "<blockquote> </blockquote>" in doc.serialized
        assert reloads_unchanged(doc)
