"""Gleam backend: custom types, functions and Wisp routing."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from ..models import MethodDecl, Param, RouteFact, SourceUnit, TypeDecl
from ..paths import join_paths
from .base import RegexBackend
from .text import find_brace_body, find_matching, line_of, mask_comments, split_top_level
from .typemap import VOID_MAPPING, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): ["String"],
            ("integer", ""): ["Int"],
            ("number", ""): ["Float"],
            ("boolean", ""): ["Bool"],
            ("string", "binary"): ["BitArray", "BitString"],
            ("string", "uuid"): ["Uuid", "uuid.Uuid"],
            ("string", "date-time"): ["Timestamp", "timestamp.Timestamp", "birl.Time", "Time"],
            VOID_MAPPING: ["Nil"],
        }
    ),
    optional_wrappers=("Option(",),
    wrappers=("Result(", "Promise("),
    sequence_prefixes=("List(",),
    map_prefixes=("Dict(",),
    strip_prefixes=("option.", "dict.", "list.", "promise.", "result."),
)

_IMPORT = re.compile(r"^import\s+([\w/]+)", re.MULTILINE)
_TYPE = re.compile(r"^(?P<pub>pub\s+)?(?:opaque\s+)?type\s+(?P<name>[A-Z]\w*)(?:\([^)]*\))?\s*\{", re.MULTILINE)
_CONSTRUCTOR = re.compile(r"(?:(?<=[\s{])|^)(?P<name>[A-Z]\w*)\s*(?P<open>\()?")
_FN = re.compile(r"^(?P<pub>pub\s+)?fn\s+(?P<name>[a-z_]\w*)\s*\(", re.MULTILINE)
_RETURN = re.compile(r"\s*->\s*(?P<ret>[^{]+?)\s*\{")
_ROUTER_CALL = re.compile(
    r"\brouter\.(?P<verb>get|post|put|delete|patch|head|options)\s*\(\s*\"(?P<path>[^\"]*)\"\s*,\s*"
    r"(?P<handler>[\w.]+)"
)
_SEGMENTS_CASE = re.compile(r"\bcase\s+wisp\.path_segments\s*\(\s*\w+\s*\)\s*\{")
_ARM = re.compile(r"^[ \t]*\[(?P<segments>[^\]]*)\]\s*->\s*(?P<target>[^\n]*)", re.MULTILINE)
_CALL_TARGET = re.compile(r"^(?P<name>[a-z_][\w.]*)\s*\(")
_METHOD_CASE = re.compile(r"\bcase\s+\w+\.method\s*\{")
_METHOD_ARM = re.compile(
    r"^[ \t]*(?:http\.)?(?P<verb>Get|Post|Put|Patch|Delete|Head|Options)\s*->\s*(?P<target>[^\n]*)",
    re.MULTILINE,
)
_REQUIRE_METHOD = re.compile(r"wisp\.require_method\s*\(\s*\w+\s*,\s*(?:http\.)?(?P<verb>Get|Post|Put|Patch|Delete)\s*\)")


class GleamBackend(RegexBackend):
    """Extracts custom types, functions and Wisp routes from Gleam modules."""

    language = "gleam"
    extensions = (".gleam",)
    types = TYPES

    def scan(self, text: str, unit: SourceUnit) -> None:
        plain = mask_comments(text, line_markers=("//",), block=None, quotes="\"")
        unit.imports.extend(_IMPORT.findall(plain))
        for match in _TYPE.finditer(plain):
            decl = self._type_decl(plain, match)
            if decl is not None:
                unit.types.append(decl)
        bodies: Dict[str, Tuple[int, int]] = {}
        for match in _FN.finditer(plain):
            paren = match.end() - 1
            close = find_matching(plain, paren, "(", ")", quotes="\"")
            if close < 0:
                continue
            ret_match = _RETURN.match(plain, close + 1)
            body, body_start = find_brace_body(plain, close + 1)
            if body_start > 0:
                bodies[match.group("name")] = (body_start, body_start + len(body))
            unit.functions.append(
                MethodDecl(
                    name=match.group("name"),
                    params=_parse_params(plain[paren + 1 : close]),
                    return_type=ret_match.group("ret").strip() if ret_match else "",
                    visibility="public" if match.group("pub") else "private",
                    line=line_of(plain, match.start()),
                )
            )
        for match in _ROUTER_CALL.finditer(plain):
            module, _, handler = match.group("handler").rpartition(".")
            unit.routes.append(
                RouteFact(
                    method=match.group("verb").upper(),
                    path=match.group("path"),
                    handler=handler,
                    owner=module or None,
                    line=line_of(plain, match.start()),
                    framework="wisp",
                )
            )
        for match in _SEGMENTS_CASE.finditer(plain):
            body, body_start = find_brace_body(plain, match.end() - 1)
            if body_start > 0:
                unit.routes.extend(_segment_routes(plain, body_start, body_start + len(body), bodies))

    def _type_decl(self, plain: str, match: re.Match[str]) -> Optional[TypeDecl]:
        body, body_start = find_brace_body(plain, match.end() - 1)
        decl = TypeDecl(
            name=match.group("name"),
            line=line_of(plain, match.start()),
            kind="record",
        )
        constructors: List[Tuple[str, str, int]] = []
        cursor = body_start
        end = body_start + len(body)
        while body_start > 0 and cursor < end:
            constructor = _CONSTRUCTOR.search(plain, cursor, end)
            if constructor is None:
                break
            fields_text = ""
            cursor = constructor.end()
            if constructor.group("open"):
                close = find_matching(plain, constructor.end() - 1, "(", ")", quotes="\"")
                if close < 0:
                    break
                fields_text = plain[constructor.end() : close]
                cursor = close + 1
            constructors.append((constructor.group("name"), fields_text, line_of(plain, constructor.start())))
        if len(constructors) > 1:
            decl.kind = "union" if any(fields for _, fields, _ in constructors) else "enum"
        chosen = next((item for item in constructors if item[0] == decl.name), None)
        if chosen is None and len(constructors) == 1:
            chosen = constructors[0]
        if chosen is not None:
            for segment in split_top_level(chosen[1]):
                name, _, raw_type = segment.partition(":")
                if raw_type and name.strip().isidentifier():
                    decl.fields.append(self.make_field(name.strip(), raw_type.strip(), chosen[2]))
        return decl


def _parse_params(text: str) -> List[Param]:
    params: List[Param] = []
    for segment in split_top_level(text):
        names, _, raw_type = segment.partition(":")
        words = names.split()
        if not words:
            continue
        params.append(Param(name=words[-1], type=raw_type.strip()))
    return params


def _segment_routes(
    plain: str, start: int, end: int, bodies: Dict[str, Tuple[int, int]]
) -> List[RouteFact]:
    routes: List[RouteFact] = []
    for arm in _ARM.finditer(plain, start, end):
        path = _segments_path(arm.group("segments"))
        target = arm.group("target").strip()
        call = _CALL_TARGET.match(target)
        qualified = call.group("name") if call else "lambda"
        module, _, handler = qualified.rpartition(".")
        line = line_of(plain, arm.start())
        methods = _handler_methods(plain, bodies.get(handler), handler) if not module else []
        if not methods:
            methods = [("GET", handler)]
        for method, method_handler in methods:
            routes.append(
                RouteFact(
                    method=method,
                    path=path,
                    handler=method_handler,
                    owner=module or None,
                    line=line,
                    framework="wisp",
                )
            )
    return routes


def _segments_path(segments: str) -> str:
    parts: List[str] = []
    for item in split_top_level(segments):
        item = item.strip()
        if item.startswith('"') and item.endswith('"'):
            parts.append(item[1:-1])
        elif item.startswith(".."):
            name = item[2:].strip().lstrip("_") or "rest"
            parts.append("{%s}" % name)
        elif re.match(r"^_?[a-z]\w*$", item):
            parts.append("{%s}" % (item.lstrip("_") or "param"))
        elif item == "_":
            parts.append("{param}")
    return join_paths(*parts)


def _handler_methods(plain: str, extent: Optional[Tuple[int, int]], handler: str) -> List[Tuple[str, str]]:
    """Read the HTTP methods a handler dispatches on from its own body."""
    if extent is None:
        return []
    start, end = extent
    required = _REQUIRE_METHOD.search(plain, start, end)
    case = _METHOD_CASE.search(plain, start, end)
    if case is None:
        if required is not None:
            return [(required.group("verb").upper(), handler)]
        return []
    body, body_start = find_brace_body(plain, case.end() - 1)
    methods: List[Tuple[str, str]] = []
    for arm in _METHOD_ARM.finditer(plain, body_start, body_start + len(body)):
        call = _CALL_TARGET.match(arm.group("target").strip())
        target = call.group("name").rpartition(".")[2] if call else "lambda"
        methods.append((arm.group("verb").upper(), target))
    return methods


__all__ = ["GleamBackend", "TYPES"]
