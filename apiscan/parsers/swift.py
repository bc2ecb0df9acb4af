"""Swift backend: Codable structs, Fluent models and Vapor route builders."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence, Tuple

from ..models import Annotation, FieldDecl, MethodDecl, Param, RouteFact, SourceUnit, TypeDecl, unquote
from .base import RegexBackend
from .text import (
    AttributeSpan,
    attached_annotations,
    blank_spans,
    find_brace_body,
    find_matching,
    line_of,
    mask_comments,
    scan_at_annotations,
    split_top_level,
)
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): ["String", "Character", "Substring"],
            ("integer", "int32"): ["Int", "Int32", "Int16", "Int8", "UInt", "UInt32", "UInt16", "UInt8"],
            ("integer", "int64"): ["Int64", "UInt64"],
            ("number", "float"): ["Float"],
            ("number", "double"): ["Double", "Decimal", "CGFloat"],
            ("boolean", ""): ["Bool"],
            ("string", "date-time"): ["Date"],
            ("string", "uuid"): ["UUID"],
            ("string", "binary"): ["Data", "ByteBuffer", "File"],
            ("string", "uri"): ["URL"],
            DEFAULT_MAPPING: ["Any", "AnyCodable", "JSON"],
            VOID_MAPPING: ["Void", "()", "HTTPStatus"],
        }
    ),
    nullable_suffixes=("?", "!"),
    optional_wrappers=("Optional<",),
    wrappers=("EventLoopFuture<", "Future<"),
    sequence_prefixes=("Array<", "Set<", "ContiguousArray<"),
    map_prefixes=("Dictionary<",),
    bracket_literals=True,
)

_IMPORT = re.compile(r"^\s*(?:@\w+\s+)?import\s+(\w+)", re.MULTILINE)
_TYPE = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:public|private|internal|fileprivate|open|final|indirect)\s+)*)"
    r"(?P<kind>struct|class|enum|actor|protocol|extension)\s+(?!(?:func|var|let)\b)(?P<name>[A-Za-z_][\w.]*)(?P<generics>\s*<[^>{]*>)?"
)
_PROPERTY = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:public|private|internal|fileprivate|open|static|lazy|weak"
    r"|unowned|final|override|nonisolated)\s+)*)(?:private\(set\)\s+)?(?P<kind>let|var)\s+"
    r"(?P<name>[A-Za-z_]\w*)\s*:\s*(?P<type>[^=\n{]+?)\s*(?:=\s*(?P<default>[^\n{]+?))?\s*$",
    re.MULTILINE,
)
_FUNCTION = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:public|private|internal|fileprivate|open|static|final"
    r"|override|mutating|nonisolated|class|required|convenience)\s+)*)"
    r"(?:func\s+(?P<name>[A-Za-z_]\w*)|(?P<init>init)[?!]?)\s*(?:<[^>]*>)?\s*\("
)
_SIGNATURE_TAIL = re.compile(r"\s*(?P<effects>(?:(?:async|throws|rethrows)\s*)*)(?:->\s*(?P<ret>[^{\n]+?))?\s*(?=\{|$)", re.MULTILINE)
_PARAM = re.compile(
    r"^(?:(?P<label>[A-Za-z_]\w*)\s+)?(?P<name>[A-Za-z_]\w*)\s*:\s*(?:inout\s+)?(?P<type>.+?)"
    r"\s*(?:=\s*(?P<default>.+))?$",
    re.DOTALL,
)
_GROUP_ASSIGN = re.compile(
    r"(?:let|var)\s+(?P<var>\w+)\s*=\s*(?P<parent>\w+)\s*\.\s*grouped\s*\((?P<args>[^()]*)\)"
)
_GROUP_CLOSURE = re.compile(
    r"(?P<parent>\w+)\s*\.\s*group\s*\((?P<args>[^()]*)\)\s*\{\s*(?P<var>\w+)\s+in\b"
)
_ROUTE_CALL = re.compile(
    r"(?P<target>\w+)\s*\.\s*(?P<verb>get|post|put|delete|patch|on)\s*(?P<open>\(|(?=\{))"
)
_SEGMENT_CALL = re.compile(r"^\.(?:constant|parameter)\s*\(\s*\"(?P<name>[^\"]*)\"\s*\)$")

_NAME_ANNOTATIONS = ("Field", "OptionalField", "Parent", "OptionalParent", "Timestamp", "Enum", "OptionalEnum")
_OPTIONAL_ANNOTATIONS = ("OptionalField", "OptionalParent", "OptionalEnum", "Timestamp")
_VISIBILITY = ("public", "private", "internal", "fileprivate", "open")


class SwiftBackend(RegexBackend):
    """Extracts structs, classes, properties and Vapor routes from Swift files."""

    language = "swift"
    extensions = (".swift",)
    types = TYPES

    def scan(self, text: str, unit: SourceUnit) -> None:
        text = mask_comments(text)
        unit.imports.extend(_IMPORT.findall(text))
        spans = scan_at_annotations(text, separators=(":",))
        plain = blank_spans(text, spans)
        extents = self._scan_types(text, plain, 0, len(plain), spans, unit)
        functions, _ = self._scan_functions(text, plain, 0, len(plain), extents, None)
        unit.functions.extend(functions)
        unit.routes.extend(self._vapor_routes(text, plain, unit, extents))

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def _scan_types(
        self,
        text: str,
        plain: str,
        start: int,
        end: int,
        spans: Sequence[AttributeSpan],
        unit: SourceUnit,
    ) -> List[Tuple[int, int, str]]:
        extents: List[Tuple[int, int, str]] = []
        cursor = start
        for match in _TYPE.finditer(plain, start, end):
            if match.start() < cursor:
                continue
            body, body_start = find_brace_body(plain, match.end(), stop=";\n")
            if body_start < 0:
                continue
            header = plain[match.end() : body_start - 1]
            body_end = body_start + len(body)
            name = match.group("name")
            if match.group("kind") == "extension":
                decl = unit.find_type(name)
                if decl is None:
                    decl = TypeDecl(name=name, line=line_of(text, match.start()), kind="extension")
                    unit.types.append(decl)
            else:
                decl = TypeDecl(
                    name=name,
                    bases=[item.split("<")[0].strip() for item in split_top_level(header.split(":", 1)[1])]
                    if ":" in header
                    else [],
                    annotations=attached_annotations(text, spans, match.start()),
                    line=line_of(text, match.start()),
                    kind=match.group("kind"),
                )
                unit.types.append(decl)
            nested = self._scan_types(text, plain, body_start, body_end, spans, unit)
            excluded = [(low, high) for low, high, _ in nested]
            methods, method_extents = self._scan_functions(text, plain, body_start, body_end, nested, decl.name)
            decl.methods.extend(methods)
            self._scan_properties(text, plain, body_start, body_end, spans, excluded + method_extents, decl)
            extents.append((match.start(), body_end, decl.name))
            extents.extend(nested)
            cursor = body_end
        return extents

    def _scan_properties(
        self,
        text: str,
        plain: str,
        start: int,
        end: int,
        spans: Sequence[AttributeSpan],
        excluded: Sequence[Tuple[int, int]],
        decl: TypeDecl,
    ) -> None:
        for match in _PROPERTY.finditer(plain, start, end):
            if any(low <= match.start() < high for low, high in excluded):
                continue
            if "static" in match.group("mods").split():
                continue
            annotations = attached_annotations(text, spans, match.start())
            decl.fields.append(
                self._field(
                    match.group("name"),
                    match.group("type"),
                    line_of(text, match.start()),
                    match.group("default"),
                    annotations,
                )
            )

    def _field(
        self, name: str, raw_type: str, line: int, default: Optional[str], annotations: List[Annotation]
    ) -> FieldDecl:
        alias = None
        optional = False
        for annotation in annotations:
            if annotation.name in _NAME_ANNOTATIONS:
                alias = annotation.string_arg("key")
            if annotation.name in _OPTIONAL_ANNOTATIONS:
                optional = True
        return self.make_field(
            name,
            " ".join(raw_type.split()),
            line,
            default=default.strip() if default else None,
            optional=optional,
            alias=alias if alias != name else None,
            annotations=annotations,
        )

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    def _scan_functions(
        self,
        text: str,
        plain: str,
        start: int,
        end: int,
        excluded: Sequence[Tuple[int, int, str]],
        owner: Optional[str],
    ) -> Tuple[List[MethodDecl], List[Tuple[int, int]]]:
        functions: List[MethodDecl] = []
        extents: List[Tuple[int, int]] = []
        cursor = start
        for match in _FUNCTION.finditer(plain, start, end):
            if match.start() < cursor or any(low <= match.start() < high for low, high, _ in excluded):
                continue
            paren = match.end() - 1
            close = find_matching(plain, paren, "(", ")")
            if close < 0:
                continue
            tail = _SIGNATURE_TAIL.match(plain, close + 1)
            effects = tail.group("effects").split() if tail else []
            ret = (tail.group("ret") or "").strip() if tail else ""
            body, body_start = find_brace_body(plain, close + 1, stop="\n")
            extent_end = body_start + len(body) + 1 if body_start > 0 else close + 1
            extents.append((match.start(), extent_end))
            cursor = extent_end
            mods = match.group("mods").split()
            functions.append(
                MethodDecl(
                    name=match.group("name") or "init",
                    params=_parse_params(text[paren + 1 : close]),
                    return_type=ret or "Void",
                    is_async="async" in effects,
                    visibility=next((mod for mod in mods if mod in _VISIBILITY), "internal"),
                    line=line_of(text, match.start()),
                    owner=owner,
                )
            )
        return functions, extents

    # ------------------------------------------------------------------
    # Vapor
    # ------------------------------------------------------------------

    def _vapor_routes(
        self, text: str, plain: str, unit: SourceUnit, extents: Sequence[Tuple[int, int, str]]
    ) -> List[RouteFact]:
        groups: Dict[str, str] = {}
        for pattern in (_GROUP_ASSIGN, _GROUP_CLOSURE):
            for match in pattern.finditer(plain):
                parent = groups.get(match.group("parent"), "")
                segments = _segments(match.group("args"))
                groups[match.group("var")] = "/".join(part for part in [parent] + segments if part)
        routes: List[RouteFact] = []
        for match in _ROUTE_CALL.finditer(plain):
            verb = match.group("verb")
            args: List[str] = []
            if match.group("open") == "(":
                close = find_matching(plain, match.end() - 1, "(", ")")
                if close < 0:
                    continue
                args = split_top_level(plain[match.end() : close])
            if verb == "on":
                if not args or not args[0].startswith("."):
                    continue
                verb = args[0][1:]
                args = args[1:]
            handler = "lambda"
            path_args: List[str] = []
            for arg in args:
                if arg.startswith("use:"):
                    handler = arg[len("use:") :].strip().split(".")[-1].split("(")[0]
                elif ":" in arg.split("\"")[0]:
                    continue
                else:
                    path_args.append(arg)
            if not all(_is_segment(arg) for arg in path_args):
                continue
            if handler == "lambda" and not _has_trailing_closure(plain, match):
                continue
            owner = _enclosing(extents, match.start())
            routes.append(
                RouteFact(
                    method=verb.upper(),
                    path="/" + "/".join(_segments(",".join(path_args))),
                    handler=handler,
                    owner=owner if handler != "lambda" else None,
                    prefix=groups.get(match.group("target"), ""),
                    line=line_of(text, match.start()),
                    framework="vapor",
                )
            )
        return routes


def _parse_params(params_text: str) -> List[Param]:
    params: List[Param] = []
    for segment in split_top_level(params_text):
        spans = scan_at_annotations(segment, separators=(":",))
        body = segment[spans[-1].end :].strip() if spans else segment
        match = _PARAM.match(body)
        if not match:
            continue
        type_text = " ".join(match.group("type").split())
        default = match.group("default")
        params.append(
            Param(
                name=match.group("name"),
                type=type_text,
                required=default is None and not type_text.endswith("?"),
                default=default.strip() if default else None,
                annotations=[item for span in spans for item in span.annotations],
            )
        )
    return params


def _segments(args: str) -> List[str]:
    """Flatten Vapor path components (``"users"``, ``":id"``, ``.parameter("id")``)."""
    segments: List[str] = []
    for arg in split_top_level(args):
        call = _SEGMENT_CALL.match(arg)
        if call:
            name = call.group("name")
            segments.append(":" + name if arg.startswith(".parameter") else name)
        elif arg in (".catchall", "**"):
            segments.append("*catchall")
        elif arg in (".anything", "*"):
            segments.append(":anything")
        elif arg.startswith("\""):
            segments.extend(part for part in unquote(arg).split("/") if part)
    return segments


def _is_segment(arg: str) -> bool:
    return arg.startswith("\"") or bool(_SEGMENT_CALL.match(arg)) or arg in (".catchall", "**", ".anything", "*")


def _has_trailing_closure(plain: str, match: re.Match[str]) -> bool:
    if match.group("open") != "(":
        return True
    close = find_matching(plain, match.end() - 1, "(", ")")
    return plain[close + 1 :].lstrip().startswith("{")


def _enclosing(extents: Sequence[Tuple[int, int, str]], index: int) -> Optional[str]:
    owner = None
    width = None
    for low, high, name in extents:
        if low <= index < high and (width is None or high - low < width):
            owner = name
            width = high - low
    return owner


__all__ = ["SwiftBackend", "TYPES"]
