"""Tests for JS argument splitting and value classification."""

import pytest

from iampilot.extraction.argument_extractor import (
    LexError,
    LineIndex,
    classify_value,
    find_closing,
    normalize_property_key,
    parse_arguments,
    parse_object_literal,
    split_top_level,
)


class TestClassifyValue:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ('"my-bucket"', "my-bucket"),
            ("'single'", "single"),
            ("`no substitution`", "no substitution"),
            ("42", "42"),
            ("-3.5", "-3.5"),
            ("1e3", "1e3"),
            ("true", "true"),
            ("false", "false"),
            ("null", "null"),
            ('"with \\"escape\\""', 'with "escape"'),
            ("`arn:\\${x}`", "arn:${x}"),
        ],
    )
    def test_literals_are_resolved(self, text, expected):
        value = classify_value(text)
        assert value.is_resolved
        assert value.value == expected

    @pytest.mark.parametrize(
        "text",
        [
            "bucketName",
            "event.key",
            "getBucket()",
            "`prefix-${name}`",
            "`a\\\\${name}`",
            "process.env.BUCKET",
            "a + b",
            "[1, 2]",
            "{ nested: 1 }",
        ],
    )
    def test_expressions_are_unresolved_with_original_text(self, text):
        value = classify_value(text)
        assert not value.is_resolved
        assert value.value == text

    def test_surrounding_whitespace_ignored(self):
        assert classify_value('  "x"  ').value == "x"


class TestSplitting:
    def test_commas_inside_strings_and_brackets_ignored(self):
        parts = split_top_level('a, "b, c", [d, e], {f: g, h: i}, fn(j, k)')
        assert parts == ["a", '"b, c"', "[d, e]", "{f: g, h: i}", "fn(j, k)"]

    def test_template_substitution_with_comma(self):
        parts = parse_arguments("`${a, b}`, c")
        assert parts == ["`${a, b}`", "c"]

    def test_empty_argument_list(self):
        assert parse_arguments("   ") == []

    def test_find_closing_skips_strings(self):
        text = '({ a: ")" })'
        assert find_closing(text, 0) == len(text) - 1

    def test_mismatched_bracket_raises(self):
        with pytest.raises(LexError):
            find_closing("(a]", 0)

    def test_unterminated_string_raises(self):
        with pytest.raises(LexError):
            split_top_level('"abc\n')


class TestObjectLiteral:
    def test_mixed_properties(self):
        params = parse_object_literal(
            '{ Bucket: "reports", Key: key, "Quoted-Key": 1, ...rest, [computed]: 2, shorthand }'
        )
        assert params["Bucket"].is_resolved and params["Bucket"].value == "reports"
        assert not params["Key"].is_resolved and params["Key"].value == "key"
        assert params["Quoted-Key"].value == "1"
        assert not params["shorthand"].is_resolved
        assert "rest" not in params
        assert "computed" not in params
        assert len(params) == 4

    def test_not_an_object(self):
        assert parse_object_literal("input") == {}

    def test_normalize_property_key(self):
        assert normalize_property_key(" 'Bucket' ") == "Bucket"
        assert normalize_property_key("[k]") is None


class TestLineIndex:
    def test_positions(self):
        index = LineIndex("ab\ncd\n\nef")
        assert index.position(0) == (1, 0)
        assert index.position(4) == (2, 1)
        assert index.position(7) == (4, 0)
