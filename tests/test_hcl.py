"""Tests for the HCL tokenizer, literal parser and formatter."""
from __future__ import annotations

import pytest

from ec2_terraform_manager import hcl


def _kinds(text: str) -> list[str]:
    return [token.kind for token in hcl.tokenize(text) if token.kind != hcl.NEWLINE]


def test_braces_inside_strings_are_not_tokens() -> None:
    """Braces in a quoted string stay inside the STRING token."""
    assert _kinds('name = "a } { b"') == [hcl.IDENT, hcl.EQUALS, hcl.STRING]


def test_braces_inside_comments_are_not_tokens() -> None:
    """Hash, slash and block comments swallow braces."""
    text = "# {\n// }\n/* { } */\nx = 1"
    assert _kinds(text) == [hcl.COMMENT, hcl.COMMENT, hcl.COMMENT, hcl.IDENT, hcl.EQUALS, hcl.NUMBER]


def test_template_interpolation_is_part_of_the_string() -> None:
    """A ${...} template with nested quotes and braces is one string token."""
    tokens = hcl.tokenize('tag = "${lookup(var.m, "k}", {})}-x"')
    strings = [token for token in tokens if token.kind == hcl.STRING]
    assert len(strings) == 1
    assert strings[0].template is True
    assert not [token for token in tokens if token.kind == hcl.LBRACE]


def test_heredoc_body_is_one_token() -> None:
    """Heredoc content including braces is a single token."""
    text = "script = <<EOT\nif x { y }\nEOT\nnext = 1\n"
    tokens = hcl.tokenize(text)
    heredocs = [token for token in tokens if token.kind == hcl.HEREDOC]
    assert [token.value for token in heredocs] == ["if x { y }\n"]
    assert not [token for token in tokens if token.kind == hcl.LBRACE]


def test_flush_heredoc_trims_common_indentation() -> None:
    assert hcl.parse_literal("<<-EOT\n    hi\n  there\n  EOT") == "  hi\nthere\n"


def test_unterminated_string_raises() -> None:
    with pytest.raises(hcl.HclSyntaxError):
        hcl.tokenize('name = "open')


def test_unterminated_block_comment_raises() -> None:
    with pytest.raises(hcl.HclSyntaxError):
        hcl.tokenize("/* never closed")


def test_token_lines_are_zero_based() -> None:
    tokens = [token for token in hcl.tokenize("a = 1\n\nb = 2") if token.kind == hcl.IDENT]
    assert [(token.text, token.line) for token in tokens] == [("a", 0), ("b", 2)]


def test_parse_literal_values() -> None:
    """Objects, tuples, numbers, booleans and null parse to Python values."""
    text = '{\n  a = 1\n  "b c" = "x"\n  list = [1, -2, true, null]\n  nested = { f = 1.5 }\n}'
    assert hcl.parse_literal(text) == {
        "a": 1,
        "b c": "x",
        "list": [1, -2, True, None],
        "nested": {"f": 1.5},
    }


def test_parse_literal_unescapes_strings() -> None:
    assert hcl.parse_literal(r'"a\"b\\c\nd"') == 'a"b\\c\nd'
    assert hcl.parse_literal('"$${literal}"') == "${literal}"


def test_parse_literal_rejects_expressions() -> None:
    with pytest.raises(hcl.HclSyntaxError):
        hcl.parse_literal("var.subnet")
    with pytest.raises(hcl.HclSyntaxError):
        hcl.parse_literal('"${var.name}"')


def test_parse_literal_rejects_duplicate_keys() -> None:
    with pytest.raises(hcl.HclSyntaxError):
        hcl.parse_literal("{\n  a = 1\n  a = 2\n}")


def test_parse_entry_accepts_trailing_comma() -> None:
    assert hcl.parse_entry('  web = { ami = "x" },') == ("web", {"ami": "x"})


def test_format_string_escapes() -> None:
    """Quotes, backslashes, control characters and template openers are escaped."""
    assert hcl.format_string('say "hi"\\now') == r'"say \"hi\"\\now"'
    assert hcl.format_string("a\nb\tc") == r'"a\nb\tc"'
    assert hcl.format_string("${x} %{y}") == '"$${x} %%{y}"'
    assert hcl.format_string("\x01") == r'"\u0001"'


def test_format_key_quotes_when_needed() -> None:
    assert hcl.format_key("web_1") == "web_1"
    assert hcl.format_key("1st_server") == '"1st_server"'
    assert hcl.format_key("null") == '"null"'
    assert hcl.format_key("Cost Center") == '"Cost Center"'


def test_format_value_layout() -> None:
    """Empty containers stay inline, objects span lines with aligned equals."""
    assert hcl.format_value({}) == "{}"
    assert hcl.format_value([]) == "[]"
    assert hcl.format_value(["a", "b"]) == '["a", "b"]'
    assert hcl.format_value({"a": 1, "long_key": True}) == "{\n  a        = 1\n  long_key = true\n}"


def test_format_then_parse_preserves_awkward_strings() -> None:
    value = {"tags": {"Note": 'brace } { "quoted" ${not_a_template}', "Path": "C:\\temp"}}
    assert hcl.parse_literal(hcl.format_value(value)) == value
