"""Text scanning helpers shared by the regex backends."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..models import Annotation

_OPENERS = {"<": ">", "(": ")", "[": "]", "{": "}"}
_CLOSERS = {value: key for key, value in _OPENERS.items()}


def line_of(text: str, index: int) -> int:
    """Return 1-based line number for a character index."""
    return text.count("\n", 0, index) + 1


def split_top_level(text: str, separator: str = ",", quotes: str = "\"'`") -> List[str]:
    """Split ``text`` on ``separator`` outside nested delimiters and string literals.

    ``Dictionary<string, List<int>> data, string name`` splits into two
    segments. Arrows (``->``, ``=>``) never close an angle bracket and depth
    never drops below zero, so stray comparison operators cannot swallow the
    rest of the list.
    """
    segments: List[str] = []
    depth = 0
    quote: Optional[str] = None
    current: List[str] = []
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if quote is not None:
            current.append(char)
            if char == "\\" and index + 1 < length:
                current.append(text[index + 1])
                index += 2
                continue
            if char == quote:
                quote = None
            index += 1
            continue
        if char in quotes:
            quote = char
        elif char in _OPENERS:
            depth += 1
        elif char in _CLOSERS:
            if not (char == ">" and index > 0 and text[index - 1] in "-="):
                depth = max(depth - 1, 0)
        elif depth == 0 and text.startswith(separator, index):
            segments.append("".join(current))
            current = []
            index += len(separator)
            continue
        current.append(char)
        index += 1
    segments.append("".join(current))
    return [segment.strip() for segment in segments if segment.strip()]


def find_matching(
    text: str, open_index: int, opener: str = "{", closer: str = "}", quotes: str = "\"'"
) -> int:
    """Return the index of the delimiter closing ``text[open_index]`` or -1."""
    depth = 0
    quote: Optional[str] = None
    index = open_index
    length = len(text)
    while index < length:
        char = text[index]
        if quote is not None:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in quotes:
            quote = char
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return index
        index += 1
    return -1


def find_brace_body(
    text: str, start: int = 0, stop: str = "", quotes: str = "\"'"
) -> Tuple[str, int]:
    """Locate the ``{...}`` body that follows ``start``.

    Returns ``(body, offset)`` where ``offset`` is the index of the first body
    character. A ``stop`` character met before the opening brace means the
    declaration has no body. An unterminated body yields an empty string.
    """
    open_index = -1
    paren_depth = 0
    for index in range(start, len(text)):
        char = text[index]
        if char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth = max(paren_depth - 1, 0)
        elif char == "{":
            open_index = index
            break
        elif paren_depth == 0 and char in stop:
            return "", -1
    if open_index < 0:
        return "", -1
    close_index = find_matching(text, open_index, "{", "}", quotes)
    if close_index < 0:
        return "", open_index + 1
    return text[open_index + 1 : close_index], open_index + 1


def mask_literals(text: str, quotes: str = "\"'", line_comment: str = "#") -> str:
    """Blank out string literal contents and line comments, preserving offsets."""
    chars = list(text)
    quote: Optional[str] = None
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if quote is not None:
            if char == "\\" and index + 1 < length:
                chars[index] = " "
                if text[index + 1] != "\n":
                    chars[index + 1] = " "
                index += 2
                continue
            if char == quote:
                quote = None
            elif char != "\n":
                chars[index] = " "
            index += 1
            continue
        if char in quotes:
            quote = char
        elif line_comment and text.startswith(line_comment, index):
            while index < length and text[index] != "\n":
                chars[index] = " "
                index += 1
            continue
        index += 1
    return "".join(chars)


def mask_comments(
    text: str,
    line_markers: Sequence[str] = ("//",),
    block: Optional[Tuple[str, str]] = ("/*", "*/"),
    quotes: str = "\"",
) -> str:
    """Blank out comments (but not string literals), preserving offsets."""
    chars = list(text)
    quote: Optional[str] = None
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if quote is not None:
            if char == "\\":
                index += 2
                continue
            if char == quote or char == "\n":
                quote = None
            index += 1
            continue
        if char in quotes:
            quote = char
            index += 1
            continue
        if block is not None and text.startswith(block[0], index):
            close = text.find(block[1], index + len(block[0]))
            stop = length if close < 0 else close + len(block[1])
            for position in range(index, stop):
                if chars[position] != "\n":
                    chars[position] = " "
            index = stop
            continue
        marker = next((item for item in line_markers if text.startswith(item, index)), None)
        if marker is not None:
            while index < length and text[index] != "\n":
                chars[index] = " "
                index += 1
            continue
        index += 1
    return "".join(chars)


_KEYWORD = re.compile(r"[A-Za-z_]+[?!]?")


def find_keyword_block(
    text: str,
    start: int,
    openers: Iterable[str],
    statement_openers: Iterable[str] = (),
    closer: str = "end",
) -> Tuple[str, int]:
    """Return the body of a keyword-delimited block whose opener ends at ``start``.

    ``openers`` always open a nested block. ``statement_openers`` (``if``,
    ``unless``...) only open one when they begin a statement, so Ruby's
    trailing ``x if y`` modifiers are ignored. Keywords must be preceded by
    whitespace or a line start and followed by whitespace, ``(`` or the end of
    input, which keeps ``render`` or ``end_date`` from counting.
    """
    opener_set = set(openers)
    statement_set = set(statement_openers)
    masked = mask_literals(text)
    depth = 1
    for match in _KEYWORD.finditer(masked, start):
        word = match.group(0)
        begin, end = match.span()
        if begin > 0 and not masked[begin - 1].isspace() and masked[begin - 1] not in "(;=":
            continue
        following = masked[end] if end < len(masked) else ""
        if word == closer:
            if following and not following.isspace() and following not in ".),;":
                continue
            depth -= 1
            if depth == 0:
                return text[start:begin], start
            continue
        if following and not following.isspace() and following != "(":
            continue
        if word in opener_set:
            depth += 1
        elif word in statement_set and _starts_statement(masked, begin):
            depth += 1
    return "", start


def _starts_statement(text: str, index: int) -> bool:
    cursor = index - 1
    while cursor >= 0 and text[cursor] in " \t":
        cursor -= 1
    return cursor < 0 or text[cursor] in "\n;=("


def statement_end(text: str, start: int) -> int:
    """Return the end of the logical line beginning at ``start``.

    A line continues while a ``(`` or ``[`` is open or while it ends with a
    comma, so multi-line DSL calls read as one statement.
    """
    depth = 0
    quote: Optional[str] = None
    index = start
    length = len(text)
    while index < length:
        char = text[index]
        if quote is not None:
            if char == "\\":
                index += 2
                continue
            if char == quote or char == "\n":
                quote = None
        elif char in "\"'":
            quote = char
        elif char in "([":
            depth += 1
        elif char in ")]":
            depth = max(depth - 1, 0)
        elif char == "\n" and depth == 0 and not text[start:index].rstrip().endswith(","):
            return index
        index += 1
    return length


def preceding_lines(text: str, index: int, pattern: re.Pattern[str]) -> List[Tuple[str, int]]:
    """Collect the lines directly above ``index`` that match ``pattern``.

    The walk stops at the first line that does not match; results are returned
    in source order together with their 1-based line numbers.
    """
    line_start = text.rfind("\n", 0, index) + 1
    collected: List[Tuple[str, int]] = []
    cursor = line_start - 1
    line_number = line_of(text, line_start)
    while cursor > 0:
        previous_start = text.rfind("\n", 0, cursor) + 1
        line = text[previous_start:cursor].strip()
        line_number -= 1
        if not line or not pattern.match(line):
            break
        collected.append((line, line_number))
        cursor = previous_start - 1
    collected.reverse()
    return collected


_KWARG = re.compile(
    r"^['\"]?(?P<key>[A-Za-z_][\w]*)['\"]?\s*(?P<sep>=>|=(?![=>])|:(?![:]))\s*(?P<value>.+)$",
    re.DOTALL,
)


def parse_arguments(
    text: str, separators: Sequence[str] = ("=", ":", "=>")
) -> Tuple[List[str], Dict[str, str]]:
    """Split an argument list into positional and keyword parts."""
    args: List[str] = []
    kwargs: Dict[str, str] = {}
    for segment in split_top_level(text):
        match = _KWARG.match(segment)
        if match and match.group("sep") in separators:
            kwargs[match.group("key")] = match.group("value").strip()
        else:
            args.append(segment)
    return args, kwargs


def make_annotation(
    name: str, raw_args: Optional[str], line: int, separators: Sequence[str] = ("=", ":", "=>")
) -> Annotation:
    args, kwargs = parse_arguments(raw_args or "", separators)
    return Annotation(name=name, args=args, kwargs=kwargs, line=line)


@dataclass
class AttributeSpan:
    """Source extent of one attribute group (``@Ann(...)``, ``[A, B(...)]``, ``#[A]``)."""

    start: int
    end: int
    annotations: List[Annotation]


_AT_NAME = re.compile(r"@([A-Za-z_][\w.]*)")
_ATTRIBUTE_ITEM = re.compile(r"^\s*(?:\w+\s*:\s*)?([A-Za-z_\\][\w.\\]*)\s*(?:\((.*)\))?\s*$", re.DOTALL)


def scan_at_annotations(text: str, separators: Sequence[str] = ("=",)) -> List[AttributeSpan]:
    """Find ``@Name`` / ``@Name(args)`` annotations in Java-like sources."""
    spans: List[AttributeSpan] = []
    for match in _AT_NAME.finditer(text):
        if match.start() > 0 and (text[match.start() - 1].isalnum() or text[match.start() - 1] in "\"'"):
            continue
        name = match.group(1)
        if name == "interface":
            continue
        end = match.end()
        raw_args: Optional[str] = None
        cursor = end
        while cursor < len(text) and text[cursor] in " \t":
            cursor += 1
        if cursor < len(text) and text[cursor] == "(":
            close = find_matching(text, cursor, "(", ")")
            if close > 0:
                raw_args = text[cursor + 1 : close]
                end = close + 1
        annotation = make_annotation(name.split(".")[-1], raw_args, line_of(text, match.start()), separators)
        spans.append(AttributeSpan(match.start(), end, [annotation]))
    return spans


def scan_bracket_attributes(
    text: str, opener: str = "[", separators: Sequence[str] = ("=", ":")
) -> List[AttributeSpan]:
    """Find C#-style ``[A, B(args)]`` or PHP-style ``#[A(args)]`` attribute groups.

    A bracket only starts an attribute group at the beginning of a statement or
    parameter, which keeps indexers such as ``items[0]`` out.
    """
    spans: List[AttributeSpan] = []
    index = text.find(opener)
    while index >= 0:
        bracket = index + len(opener) - 1
        cursor = index - 1
        while cursor >= 0 and text[cursor] in " \t":
            cursor -= 1
        close = -1
        if cursor < 0 or text[cursor] in "\n;{}([,]>" or opener != "[":
            close = find_matching(text, bracket, "[", "]")
        if close > 0:
            annotations: List[Annotation] = []
            line = line_of(text, index)
            for item in split_top_level(text[bracket + 1 : close]):
                match = _ATTRIBUTE_ITEM.match(item)
                if not match:
                    annotations = []
                    break
                name = re.split(r"[.\\]", match.group(1))[-1]
                if name.endswith("Attribute") and len(name) > len("Attribute"):
                    name = name[: -len("Attribute")]
                annotations.append(make_annotation(name, match.group(2), line, separators))
            if annotations:
                spans.append(AttributeSpan(index, close + 1, annotations))
            index = text.find(opener, close + 1)
        else:
            index = text.find(opener, index + 1)
    return spans


def attached_annotations(text: str, spans: Sequence[AttributeSpan], index: int) -> List[Annotation]:
    """Return annotations of the spans directly preceding ``index`` in source order.

    Spans are walked backwards for as long as only whitespace separates them,
    so stacked attributes all attach to the same declaration.
    """
    collected: List[Annotation] = []
    cursor = index
    for span in reversed(spans):
        if span.start >= cursor:
            continue
        if span.end > cursor or text[span.end : cursor].strip():
            break
        collected[0:0] = span.annotations
        cursor = span.start
    return collected


def blank(text: str, start: int, end: int) -> str:
    """Replace ``text[start:end]`` with spaces, keeping newlines and offsets."""
    segment = "".join(char if char == "\n" else " " for char in text[start:end])
    return text[:start] + segment + text[end:]


def blank_spans(text: str, spans: Sequence[AttributeSpan]) -> str:
    """Blank every attribute span so member patterns never match inside them."""
    chars = list(text)
    for span in spans:
        for position in range(span.start, span.end):
            if chars[position] != "\n":
                chars[position] = " "
    return "".join(chars)


def list_literal(value: str) -> List[str]:
    """Return the items of ``[a, b]`` / ``%i[a b]`` / ``{a, b}`` style literals."""
    text = value.strip()
    if text.startswith(("%i[", "%w[", "%I[", "%W[")):
        return [item.lstrip(":") for item in text[3:-1].split()]
    if text.startswith(("array(", "arrayOf(", "listOf(", "Array(", "List(")):
        text = text[text.index("(") + 1 : -1]
    elif text[:1] in "[{(" and text[-1:] in "]})":
        text = text[1:-1]
    items = []
    for item in split_top_level(text):
        item = item.strip().strip("\"'`")
        if item.startswith(":"):
            item = item[1:]
        if item:
            items.append(item)
    return items


__all__ = [
    "AttributeSpan",
    "attached_annotations",
    "blank",
    "blank_spans",
    "find_brace_body",
    "find_keyword_block",
    "find_matching",
    "line_of",
    "list_literal",
    "make_annotation",
    "mask_comments",
    "mask_literals",
    "parse_arguments",
    "preceding_lines",
    "scan_at_annotations",
    "scan_bracket_attributes",
    "split_top_level",
    "statement_end",
]
