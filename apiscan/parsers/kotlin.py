"""Kotlin backend: data classes, Ktor routing DSL and Spring controllers."""

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

from ..models import Annotation, FieldDecl, MethodDecl, Param, RouteFact, SourceUnit, TypeDecl
from ..paths import join_paths
from .base import RegexBackend
from .java import annotated_routes
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
            ("string", ""): ["String", "Char", "CharSequence"],
            ("integer", "int32"): ["Int", "Short", "Byte", "UInt", "UShort", "UByte"],
            ("integer", "int64"): ["Long", "ULong", "BigInteger"],
            ("number", "float"): ["Float"],
            ("number", "double"): ["Double", "BigDecimal"],
            ("boolean", ""): ["Boolean"],
            ("string", "date-time"): [
                "LocalDateTime", "Instant", "OffsetDateTime", "ZonedDateTime", "Date",
                "kotlinx.datetime.Instant",
            ],
            ("string", "date"): ["LocalDate"],
            ("string", "time"): ["LocalTime", "Duration"],
            ("string", "uuid"): ["UUID", "Uuid"],
            ("string", "binary"): ["ByteArray", "MultipartFile"],
            DEFAULT_MAPPING: ["Any", "JsonObject", "JsonElement"],
            VOID_MAPPING: ["Unit", "Nothing"],
        }
    ),
    nullable_suffixes=("?",),
    wrappers=("ResponseEntity<", "Deferred<", "Mono<", "Response<"),
    sequence_prefixes=(
        "List<", "MutableList<", "ArrayList<", "Set<", "MutableSet<", "HashSet<", "Array<",
        "Collection<", "Iterable<", "Sequence<", "Flow<", "Flux<",
    ),
    map_prefixes=("Map<", "MutableMap<", "HashMap<", "LinkedHashMap<"),
)

_PACKAGE = re.compile(r"^\s*package\s+([\w.]+)", re.MULTILINE)
_IMPORT = re.compile(r"^\s*import\s+([\w.*]+)", re.MULTILINE)
_TYPE = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:public|private|internal|protected|open|abstract|sealed"
    r"|data|inner|enum|annotation|value|final)\s+)*)(?P<kind>class|interface|object)\s+"
    r"(?P<name>[A-Za-z_]\w*)(?P<generics>\s*<[^>{(]*>)?"
)
_FUNCTION = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:public|private|internal|protected|open|override|suspend"
    r"|inline|operator|abstract|final|infix|tailrec)\s+)*)fun\s+(?:<[^>]*>\s*)?"
    r"(?:[\w.<>]+\.)?(?P<name>[A-Za-z_]\w*)\s*\("
)
_PROPERTY = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:public|private|internal|protected|open|override|lateinit"
    r"|const)\s+)*)(?P<kind>val|var)\s+(?P<name>[A-Za-z_]\w*)\s*:\s*(?P<type>[^=\n{]+?)"
    r"\s*(?:=\s*(?P<default>[^\n]+))?$",
    re.MULTILINE,
)
_CONSTRUCTOR_PROPERTY = re.compile(
    r"^(?:(?:public|private|internal|protected|override|open)\s+)*(?P<kind>val|var)\s+"
    r"(?P<name>[A-Za-z_]\w*)\s*:\s*(?P<type>.+?)\s*(?:=\s*(?P<default>.+))?$",
    re.DOTALL,
)
_PARAM = re.compile(
    r"^(?:(?:vararg|noinline|crossinline)\s+)?(?P<name>[A-Za-z_]\w*)\s*:\s*(?P<type>.+?)"
    r"\s*(?:=\s*(?P<default>.+))?$",
    re.DOTALL,
)
_CONSTRUCTOR_PREFIX = re.compile(r"[ \t]*(?:(?:private|internal|protected|public)\s+)?(?:constructor\s*)?")
_RETURN_TYPE = re.compile(r"\s*:\s*(?P<ret>[^{=\n]+)")
_KTOR_CALL = re.compile(
    r"(?<![\w.])(?P<verb>route|get|post|put|delete|patch|head|options)\s*"
    r"(?:\(\s*\"(?P<path>[^\"]*)\"\s*(?:,\s*(?P<extra>[^){]*))?\)\s*)?(?=\{)"
)

_HTTP_METHOD = re.compile(r"HttpMethod\.(\w+)")
_VISIBILITY = ("public", "private", "internal", "protected")
_NAME_ANNOTATIONS = ("SerialName", "JsonProperty", "SerializedName")


class KotlinBackend(RegexBackend):
    """Extracts classes, data-class properties and Ktor/Spring routes from Kotlin files."""

    language = "kotlin"
    extensions = (".kt", ".kts")
    types = TYPES

    def scan(self, text: str, unit: SourceUnit) -> None:
        text = mask_comments(text)
        unit.imports.extend(_IMPORT.findall(text))
        package_match = _PACKAGE.search(text)
        package = package_match.group(1) if package_match else None
        spans = scan_at_annotations(text)
        plain = blank_spans(text, spans)
        types, extents = self._scan_types(text, plain, 0, len(text), spans, package)
        unit.types.extend(types)
        unit.functions.extend(self._scan_functions(text, plain, 0, len(text), spans, extents, None)[0])
        for decl in unit.types:
            unit.routes.extend(annotated_routes(decl))
        unit.routes.extend(self._ktor_routes(plain, 0, len(plain), ""))

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
        package: Optional[str],
    ) -> Tuple[List[TypeDecl], List[Tuple[int, int]]]:
        found: List[TypeDecl] = []
        extents: List[Tuple[int, int]] = []
        cursor = start
        for match in _TYPE.finditer(plain, start, end):
            if match.start() < cursor:
                continue
            mods = match.group("mods").split()
            header_end = match.end()
            constructor = ""
            paren = _skip_constructor_keyword(plain, header_end)
            if paren < end and plain[paren] == "(":
                close = find_matching(plain, paren, "(", ")")
                if close > 0:
                    constructor = text[paren + 1 : close]
                    header_end = close + 1
            body, body_start = find_brace_body(plain, header_end, stop="\n")
            header = plain[header_end : body_start - 1] if body_start > 0 else plain[header_end : _line_end(plain, header_end)]
            kind = "data" if "data" in mods else ("enum" if "enum" in mods else match.group("kind"))
            decl = TypeDecl(
                name=match.group("name"),
                namespace=package,
                bases=_bases(header),
                annotations=attached_annotations(text, spans, match.start()),
                line=line_of(text, match.start()),
                kind=kind,
            )
            if constructor:
                decl.fields.extend(self._constructor_fields(constructor, decl.line))
            body_end = body_start + len(body) if body_start > 0 else header_end
            found.append(decl)
            if body:
                nested, nested_extents = self._scan_types(text, plain, body_start, body_end, spans, package)
                methods, method_extents = self._scan_functions(
                    text, plain, body_start, body_end, spans, nested_extents, decl.name
                )
                decl.methods.extend(methods)
                self._scan_properties(
                    text, plain, body_start, body_end, spans, nested_extents + method_extents, decl
                )
                found.extend(nested)
            extents.append((match.start(), body_end + 1))
            cursor = body_end
        return found, extents

    def _constructor_fields(self, constructor: str, line: int) -> List[FieldDecl]:
        fields: List[FieldDecl] = []
        for segment in split_top_level(constructor):
            spans = scan_at_annotations(segment)
            body = segment[spans[-1].end :].strip() if spans else segment
            match = _CONSTRUCTOR_PROPERTY.match(body)
            if not match:
                continue
            annotations = [item for span in spans for item in span.annotations]
            fields.append(
                self._field(match.group("name"), match.group("type"), line, match.group("default"), annotations)
            )
        return fields

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
            if "const" in match.group("mods").split():
                continue
            decl.fields.append(
                self._field(
                    match.group("name"),
                    match.group("type"),
                    line_of(text, match.start()),
                    match.group("default"),
                    attached_annotations(text, spans, match.start()),
                )
            )

    def _field(
        self,
        name: str,
        raw_type: str,
        line: int,
        default: Optional[str],
        annotations: List[Annotation],
    ) -> FieldDecl:
        alias = None
        for annotation in annotations:
            if annotation.name in _NAME_ANNOTATIONS:
                alias = annotation.string_arg("value")
        return self.make_field(
            name,
            " ".join(raw_type.split()),
            line,
            default=default.strip() if default else None,
            optional=default is not None,
            alias=alias,
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
        spans: Sequence[AttributeSpan],
        excluded: Sequence[Tuple[int, int]],
        owner: Optional[str],
    ) -> Tuple[List[MethodDecl], List[Tuple[int, int]]]:
        functions: List[MethodDecl] = []
        extents: List[Tuple[int, int]] = []
        cursor = start
        for match in _FUNCTION.finditer(plain, start, end):
            if match.start() < cursor or any(low <= match.start() < high for low, high in excluded):
                continue
            paren = match.end() - 1
            close = find_matching(plain, paren, "(", ")")
            if close < 0:
                continue
            ret_match = _RETURN_TYPE.match(plain, close + 1)
            ret = ret_match.group("ret").strip() if ret_match else "Unit"
            body, body_start = find_brace_body(plain, close + 1, stop="=\n")
            extent_end = body_start + len(body) + 1 if body_start > 0 else _line_end(plain, close)
            extents.append((match.start(), extent_end))
            cursor = extent_end
            mods = match.group("mods").split()
            functions.append(
                MethodDecl(
                    name=match.group("name"),
                    params=self._parse_params(text[paren + 1 : close]),
                    return_type=ret,
                    is_async="suspend" in mods,
                    visibility=next((mod for mod in mods if mod in _VISIBILITY), "public"),
                    annotations=attached_annotations(text, spans, match.start()),
                    line=line_of(text, match.start()),
                    owner=owner,
                )
            )
        return functions, extents

    def _parse_params(self, params_text: str) -> List[Param]:
        params: List[Param] = []
        for segment in split_top_level(params_text):
            spans = scan_at_annotations(segment)
            body = segment[spans[-1].end :].strip() if spans else segment
            match = _PARAM.match(body)
            if not match:
                continue
            type_text = " ".join(match.group("type").split())
            default = match.group("default")
            annotations = [item for span in spans for item in span.annotations]
            required = default is None and not type_text.endswith("?")
            for annotation in annotations:
                if annotation.kwargs.get("required", "").strip() == "false":
                    required = False
            params.append(
                Param(
                    name=match.group("name"),
                    type=type_text,
                    required=required,
                    default=default.strip() if default else None,
                    annotations=annotations,
                )
            )
        return params

    # ------------------------------------------------------------------
    # Ktor routing DSL
    # ------------------------------------------------------------------

    def _ktor_routes(self, plain: str, start: int, end: int, prefix: str) -> List[RouteFact]:
        """Walk ``route("/p") { get("/x") { } }`` blocks, carrying prefixes down."""
        routes: List[RouteFact] = []
        cursor = start
        for match in _KTOR_CALL.finditer(plain, start, end):
            if match.start() < cursor:
                continue
            body, body_start = find_brace_body(plain, match.end())
            body_end = body_start + len(body) if body_start > 0 else match.end()
            verb = match.group("verb")
            path = match.group("path") or ""
            method_match = _HTTP_METHOD.search(match.group("extra") or "")
            if verb == "route" and method_match:
                verb = method_match.group(1)
            if verb == "route":
                if match.group("path") is None:
                    continue
                routes.extend(self._ktor_routes(plain, body_start, body_end, join_paths(prefix, path)))
            else:
                routes.append(
                    RouteFact(
                        method=verb.upper(),
                        path=path,
                        handler="lambda",
                        prefix=prefix,
                        line=line_of(plain, match.start()),
                        framework="ktor",
                    )
                )
            cursor = body_end
        return routes


def _skip_constructor_keyword(text: str, index: int) -> int:
    match = _CONSTRUCTOR_PREFIX.match(text, index)
    return match.end() if match else index


def _line_end(text: str, index: int) -> int:
    position = text.find("\n", index)
    return position if position >= 0 else len(text)


def _bases(header: str) -> List[str]:
    head = header.split(" where ")[0].strip()
    if not head.startswith(":"):
        return []
    bases = []
    for item in split_top_level(head[1:]):
        name = item.split("(")[0].split(" by ")[0].strip()
        if name:
            bases.append(name)
    return bases


__all__ = ["KotlinBackend", "TYPES"]
