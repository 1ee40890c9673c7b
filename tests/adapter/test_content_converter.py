"""Tests for rich document → wiki markup conversion and format utilities."""

from __future__ import annotations

import json

import pytest

from JiraDC.Adapter.content_converter import ContentConverter, extract_plain_text
from JiraDC.Adapter.types import ConversionOptions


def doc(*content):
    return {"type": "doc", "version": 1, "content": list(content)}


def para(*content):
    return {"type": "paragraph", "content": list(content)}


def text(value, *marks):
    node = {"type": "text", "text": value}
    if marks:
        node["marks"] = [m if isinstance(m, dict) else {"type": m} for m in marks]
    return node


@pytest.fixture
def converter() -> ContentConverter:
    return ContentConverter()


# ============================================================================
# Node productions
# ============================================================================


class TestToMarkup:
    def test_strong_paragraph(self, converter):
        result = converter.to_markup(doc(para(text("Hello", "strong"))))
        assert "*Hello*" in result.content
        assert result.format == "wikimarkup"
        assert not result.fallback_used
        assert result.warnings == ()

    def test_inline_marks(self, converter):
        result = converter.to_markup(
            doc(
                para(
                    text("a", "em"),
                    text(" "),
                    text("b", "code"),
                    text(" "),
                    text("c", "strike"),
                    text(" "),
                    text("d", "underline"),
                    text(" "),
                    text("e", {"type": "subsup", "attrs": {"type": "sub"}}),
                    text(" "),
                    text("f", {"type": "textColor", "attrs": {"color": "#ff0000"}}),
                )
            )
        )
        assert result.content == "_a_ {{b}} -c- +d+ ~e~ {color:#ff0000}f{color}"

    def test_heading_levels(self, converter):
        result = converter.to_markup(
            doc(
                {"type": "heading", "attrs": {"level": 2}, "content": [text("Title")]},
                {"type": "heading", "attrs": {"level": 9}, "content": [text("Deep")]},
            )
        )
        assert result.content == "h2. Title\n\nh6. Deep"

    def test_link_mark_and_mention(self, converter):
        result = converter.to_markup(
            doc(
                para(
                    text("docs", {"type": "link", "attrs": {"href": "https://example.com"}}),
                    text(" ping "),
                    {"type": "mention", "attrs": {"id": "jdoe", "text": "@John"}},
                )
            )
        )
        assert result.content == "[docs|https://example.com] ping [~jdoe]"

    def test_nested_lists_stack_markers(self, converter):
        result = converter.to_markup(
            doc(
                {
                    "type": "bulletList",
                    "content": [
                        {
                            "type": "listItem",
                            "content": [
                                para(text("one")),
                                {
                                    "type": "orderedList",
                                    "content": [
                                        {"type": "listItem", "content": [para(text("inner"))]}
                                    ],
                                },
                            ],
                        },
                        {"type": "listItem", "content": [para(text("two"))]},
                    ],
                }
            )
        )
        assert result.content == "* one\n*# inner\n* two"

    def test_code_block_with_and_without_language(self, converter):
        with_lang = converter.to_markup(
            doc({"type": "codeBlock", "attrs": {"language": "python"}, "content": [text("x = 1")]})
        )
        plain = converter.to_markup(doc({"type": "codeBlock", "content": [text("raw")]}))
        assert with_lang.content == "{code:python}\nx = 1\n{code}"
        assert plain.content == "{noformat}\nraw\n{noformat}"

    def test_quote_and_panel_regions(self, converter):
        result = converter.to_markup(
            doc(
                {"type": "blockquote", "content": [para(text("quoted"))]},
                {"type": "panel", "attrs": {"panelType": "warning"}, "content": [para(text("careful"))]},
            )
        )
        assert result.content == "{quote}\nquoted\n{quote}\n\n{panel:title=warning}\ncareful\n{panel}"

    def test_table_header_row_uses_double_pipes(self, converter):
        result = converter.to_markup(
            doc(
                {
                    "type": "table",
                    "content": [
                        {
                            "type": "tableRow",
                            "content": [
                                {"type": "tableHeader", "content": [para(text("Key"))]},
                                {"type": "tableHeader", "content": [para(text("Value"))]},
                            ],
                        },
                        {
                            "type": "tableRow",
                            "content": [
                                {"type": "tableCell", "content": [para(text("a"))]},
                                {"type": "tableCell", "content": [para(text("b")), para(text("c"))]},
                            ],
                        },
                    ],
                }
            )
        )
        assert result.content == "||Key||Value||\n|a|b c|"

    def test_rule_media_and_cards(self, converter):
        result = converter.to_markup(
            doc(
                {"type": "rule"},
                {
                    "type": "mediaSingle",
                    "content": [{"type": "media", "attrs": {"id": "1", "alt": "diagram.png"}}],
                },
                para({"type": "inlineCard", "attrs": {"url": "https://example.com/x"}}),
            )
        )
        assert result.content == "----\n\n!diagram.png!\n\n[https://example.com/x]"


# ============================================================================
# Robustness
# ============================================================================


class TestDegradation:
    def test_unknown_node_keeps_child_text(self, converter):
        result = converter.to_markup(
            doc({"type": "expand", "content": [para(text("hidden text"))]})
        )
        assert "hidden text" in result.content
        assert result.unsupported_elements == ("expand",)
        assert result.warnings == ("Unsupported node type 'expand' converted to plain text",)

    def test_unsupported_marker_option(self):
        converter = ContentConverter(ConversionOptions(include_unsupported_as_comment=True))
        result = converter.to_markup(doc({"type": "status", "attrs": {"text": "DONE"}}))
        assert result.content == "{color:gray}[unsupported: status]{color} DONE"

    def test_depth_limit_flattens_to_text(self):
        converter = ContentConverter(ConversionOptions(max_depth=3))
        nested = text("bottom")
        for _ in range(6):
            nested = {"type": "blockquote", "content": [nested]}
        result = converter.to_markup(doc(nested))
        assert "bottom" in result.content
        assert result.fallback_used
        assert any("Maximum nesting depth" in w for w in result.warnings)

    def test_malformed_marks_degrade_node(self, converter):
        result = converter.to_markup(doc(para({"type": "text", "text": "x", "marks": ["bold"]})))
        assert result.content == "x"
        assert result.fallback_used

    @pytest.mark.parametrize("document", [None, 42, [], {"type": "doc", "content": []}])
    def test_always_returns_string(self, converter, document):
        assert isinstance(converter.to_markup(document).content, str)

    def test_plain_string_passes_through(self, converter):
        result = converter.to_markup("already *wiki*")
        assert result.content == "already *wiki*"
        assert result.format == "wikimarkup"

    def test_json_string_document_is_parsed(self, converter):
        result = converter.to_markup(json.dumps(doc(para(text("json", "strong")))))
        assert result.content == "*json*"

    def test_extract_plain_text_handles_deep_trees(self):
        nested = text("leaf")
        for _ in range(5000):
            nested = {"type": "unknown", "content": [nested]}
        assert extract_plain_text(nested) == "leaf"


class TestConvertRichFields:
    def test_rich_values_replaced_in_payload(self, converter):
        payload = {
            "fields": {"summary": "plain", "description": doc(para(text("Hi", "strong")))},
            "comments": [{"body": doc(para(text("c")))}],
        }
        converted, applied, warnings = converter.convert_rich_fields(payload)
        assert applied
        assert warnings == []
        assert converted["fields"] == {"summary": "plain", "description": "*Hi*"}
        assert converted["comments"] == [{"body": "c"}]
        assert isinstance(payload["fields"]["description"], dict)

    def test_warnings_carry_field_path(self, converter):
        _payload, _applied, warnings = converter.convert_rich_fields(
            {"fields": {"description": doc({"type": "expand", "content": [para(text("x"))]})}}
        )
        assert warnings == ["fields.description: Unsupported node type 'expand' converted to plain text"]

    def test_nothing_to_convert(self, converter):
        payload, applied, _warnings = converter.convert_rich_fields({"a": 1})
        assert payload == {"a": 1}
        assert not applied


# ============================================================================
# Detection, stripping and validation
# ============================================================================


class TestDetectFormat:
    def test_rich_tree(self, converter):
        assert converter.detect_format(doc()).format == "adf"
        assert converter.detect_format(json.dumps(doc(para(text("x"))))).format == "adf"

    def test_wiki_markup_confidence_grows_with_indicators(self, converter):
        assert converter.detect_format("h1. Title\n* item with *bold*").confidence == "high"
        assert converter.detect_format("see [~jdoe]").confidence == "low"

    def test_html(self, converter):
        detection = converter.detect_format("<p><b>x</b></p>")
        assert detection.format == "html"
        assert detection.confidence == "high"

    def test_plain(self, converter):
        detection = converter.detect_format("just words")
        assert (detection.format, detection.confidence) == ("plaintext", "low")


class TestMarkupUtilities:
    def test_markup_to_plain_text(self, converter):
        markup = "h1. Title\n*bold* and [link|https://x] for [~jdoe]\n{code:java}int x;{code}"
        assert converter.markup_to_plain_text(markup) == "Title\nbold and link for @jdoe\nint x;"

    def test_validate_balanced(self, converter):
        result = converter.validate("{code:java}\nx\n{code}\n{quote}q{quote}\n{panel:title=a}p{panel}")
        assert result.valid
        assert result.errors == ()

    def test_validate_reports_imbalance_without_repair(self, converter):
        markup = "{code:python}\nx\n{quote}\nunterminated"
        result = converter.validate(markup)
        assert not result.valid
        assert "Unclosed code blocks: 1 opened, 0 closed" in result.errors
        assert "Unclosed quotes: 1 opened, 0 closed" in result.errors

    def test_supported_listings(self, converter):
        assert "table" in converter.get_supported_elements()
        assert "link" in converter.get_supported_marks()
