"""Tests for the shared text scanning helpers."""

from __future__ import annotations

import re

from apiscan.parsers.text import (
    attached_annotations,
    find_brace_body,
    find_keyword_block,
    find_matching,
    line_of,
    list_literal,
    mask_comments,
    parse_arguments,
    preceding_lines,
    scan_at_annotations,
    scan_bracket_attributes,
    split_top_level,
    statement_end,
)


def test_split_top_level_respects_nested_generics() -> None:
    segments = split_top_level("Dictionary<string, List<int>> data, string name")
    assert segments == ["Dictionary<string, List<int>> data", "string name"]


def test_split_top_level_ignores_separators_in_strings_and_calls() -> None:
    assert split_top_level('f(a, b), "x, y", [1, 2]') == ["f(a, b)", '"x, y"', "[1, 2]"]


def test_split_top_level_does_not_close_on_arrows() -> None:
    assert split_top_level("fn: (Int) -> String, other: Map<K, V>") == [
        "fn: (Int) -> String",
        "other: Map<K, V>",
    ]


def test_find_matching_skips_braces_in_strings() -> None:
    text = 'x { "}" { } }'
    assert find_matching(text, 2) == len(text) - 1
    assert find_matching("{ unterminated", 0) == -1


def test_find_brace_body_returns_body_and_offset() -> None:
    text = "class User(Base) { int id; }"
    body, offset = find_brace_body(text, 0)
    assert body == " int id; "
    assert text[offset - 1] == "{"


def test_find_brace_body_stops_before_semicolon() -> None:
    assert find_brace_body("void run(); { }", 0, stop=";") == ("", -1)


def test_find_brace_body_unterminated_yields_empty_body() -> None:
    body, offset = find_brace_body("class Broken {", 0)
    assert body == ""
    assert offset == len("class Broken {")


def test_find_keyword_block_handles_nested_blocks_and_modifiers() -> None:
    text = "class A\n  def x\n    return 1 if y\n    if z\n      w\n    end\n  end\nend\nrest"
    start = len("class A")
    body, _ = find_keyword_block(text, start, openers=("class", "def", "do"), statement_openers=("if",))
    assert body.strip().startswith("def x")
    assert body.rstrip().endswith("end")
    assert "rest" not in body


def test_mask_comments_preserves_offsets_and_strings() -> None:
    text = 'a // note\nb /* x\ny */ c "// kept"'
    masked = mask_comments(text)
    assert len(masked) == len(text)
    assert "note" not in masked
    assert masked.count("\n") == text.count("\n")
    assert '"// kept"' in masked


def test_line_of_is_one_based() -> None:
    assert line_of("a\nb\nc", 0) == 1
    assert line_of("a\nb\nc", 4) == 3


def test_statement_end_continues_open_parens_and_trailing_commas() -> None:
    text = "get '/x',\n  to: 'a#b'\nnext"
    assert text[: statement_end(text, 0)] == "get '/x',\n  to: 'a#b'"
    call = "route(a,\n b)\nnext"
    assert call[: statement_end(call, 0)] == "route(a,\n b)"


def test_parse_arguments_splits_positional_and_keyword() -> None:
    args, kwargs = parse_arguments('"/users", methods=["GET", "POST"], name: "x"')
    assert args == ['"/users"']
    assert kwargs == {"methods": '["GET", "POST"]', "name": '"x"'}


def test_parse_arguments_honours_separators() -> None:
    args, kwargs = parse_arguments('a = 1, b: 2', separators=("=",))
    assert kwargs == {"a": "1"}
    assert args == ["b: 2"]


def test_scan_at_annotations_collects_arguments() -> None:
    text = '@GetMapping(value = "/users/{id}")\npublic User get(@PathVariable Long id) {}'
    spans = scan_at_annotations(text)
    names = [span.annotations[0].name for span in spans]
    assert names == ["GetMapping", "PathVariable"]
    assert spans[0].annotations[0].string_arg("value") == "/users/{id}"


def test_scan_bracket_attributes_skips_indexers() -> None:
    text = "[HttpGet(\"{id}\")]\n[Authorize]\npublic User Get(int id) { return items[0]; }"
    spans = scan_bracket_attributes(text)
    names = [annotation.name for span in spans for annotation in span.annotations]
    assert names == ["HttpGet", "Authorize"]
    method_index = text.index("public")
    attached = attached_annotations(text, spans, method_index)
    assert [annotation.name for annotation in attached] == ["HttpGet", "Authorize"]


def test_scan_bracket_attributes_strips_attribute_suffix() -> None:
    spans = scan_bracket_attributes("[ObsoleteAttribute]\nclass A {}")
    assert spans[0].annotations[0].name == "Obsolete"


def test_preceding_lines_stops_at_first_non_matching_line() -> None:
    text = "x = 1\n@a\n@b\ndef f(): pass"
    lines = preceding_lines(text, text.index("def"), re.compile(r"@"))
    assert lines == [("@a", 2), ("@b", 3)]


def test_list_literal_supports_several_syntaxes() -> None:
    assert list_literal("[:index, :show]") == ["index", "show"]
    assert list_literal("%i[index show]") == ["index", "show"]
    assert list_literal("['a', 'b']") == ["a", "b"]
    assert list_literal("listOf(\"x\")") == ["x"]
