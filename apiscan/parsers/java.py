"""Java backend: Spring MVC, Micronaut and JAX-RS resources, POJOs and records."""

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

from ..models import Annotation, FieldDecl, MethodDecl, Param, RouteFact, SourceUnit, TypeDecl, unquote
from .base import RegexBackend
from .text import (
    AttributeSpan,
    attached_annotations,
    blank_spans,
    find_brace_body,
    find_matching,
    line_of,
    list_literal,
    mask_comments,
    scan_at_annotations,
    split_top_level,
)
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): ["String", "char", "Character", "CharSequence"],
            ("integer", "int32"): ["int", "Integer", "short", "Short", "byte", "Byte"],
            ("integer", "int64"): ["long", "Long", "BigInteger", "AtomicLong"],
            ("number", "float"): ["float", "Float"],
            ("number", "double"): ["double", "Double", "BigDecimal"],
            ("boolean", ""): ["boolean", "Boolean"],
            ("string", "date-time"): [
                "LocalDateTime", "OffsetDateTime", "ZonedDateTime", "Instant", "Date", "Timestamp",
            ],
            ("string", "date"): ["LocalDate"],
            ("string", "time"): ["LocalTime", "Duration"],
            ("string", "uuid"): ["UUID"],
            ("string", "binary"): ["byte[]", "Byte[]", "MultipartFile", "InputStream", "Resource"],
            ("string", "uri"): ["URI", "URL"],
            DEFAULT_MAPPING: ["Object", "JsonNode", "ObjectNode"],
            VOID_MAPPING: ["void", "Void"],
        }
    ),
    optional_wrappers=("Optional<",),
    wrappers=(
        "ResponseEntity<", "CompletableFuture<", "CompletionStage<", "Mono<", "HttpResponse<",
        "Callable<", "DeferredResult<", "Uni<",
    ),
    sequence_prefixes=(
        "List<", "ArrayList<", "LinkedList<", "Set<", "HashSet<", "TreeSet<", "Collection<",
        "Iterable<", "Flux<", "Stream<", "Multi<",
    ),
    sequence_suffixes=("[]", "..."),
    map_prefixes=("Map<", "HashMap<", "LinkedHashMap<", "TreeMap<", "ConcurrentHashMap<"),
    strip_prefixes=("final ",),
)

_PACKAGE = re.compile(r"^\s*package\s+([\w.]+)\s*;", re.MULTILINE)
_IMPORT = re.compile(r"^\s*import\s+(?:static\s+)?([\w.*]+)\s*;", re.MULTILINE)
_TYPE = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:public|private|protected|static|final|abstract|sealed"
    r"|non-sealed|strictfp)\s+)*)(?P<kind>class|interface|record|enum)\s+"
    r"(?P<name>[A-Za-z_]\w*)(?P<generics>\s*<[^>{]*>)?"
)
_METHOD = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:public|private|protected|static|final|abstract"
    r"|synchronized|default|native)\s+)*)(?:<[^>(){};]*>\s+)?"
    r"(?P<ret>[A-Za-z_][\w<>\[\],.?\s]*?)\s+(?P<name>[A-Za-z_]\w*)\s*\("
)
_FIELD = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:public|private|protected|static|final|transient"
    r"|volatile)\s+)*)(?P<type>[A-Za-z_][\w<>\[\],.?]*(?:\s*<[^;=(){}]*>)?(?:\[\])*)\s+"
    r"(?P<name>[A-Za-z_]\w*)\s*(?:=\s*(?P<default>[^;]+))?;"
)
_PARAM = re.compile(r"^(?:final\s+)?(?P<type>.+?)\s+(?P<name>[A-Za-z_]\w*)$", re.DOTALL)
_CONSTANT = re.compile(r"^([A-Z][A-Z0-9_]*)\s*(?:\(.*\))?\s*(?:\{.*\})?$", re.DOTALL)

_SPRING_VERBS = {
    "GetMapping": "GET",
    "PostMapping": "POST",
    "PutMapping": "PUT",
    "DeleteMapping": "DELETE",
    "PatchMapping": "PATCH",
}
_MICRONAUT_VERBS = {
    "Get": "GET",
    "Post": "POST",
    "Put": "PUT",
    "Delete": "DELETE",
    "Patch": "PATCH",
    "Head": "HEAD",
    "Options": "OPTIONS",
}
_JAXRS_VERBS = {"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"}
_VISIBILITY = ("public", "private", "protected")
_OPTIONAL_ANNOTATIONS = ("Nullable", "Null")
_REQUIRED_ANNOTATIONS = ("NotNull", "NonNull", "NotBlank", "NotEmpty")
_NAME_ANNOTATIONS = ("JsonProperty", "SerializedName", "JsonbProperty")
_KEYWORDS = {
    "return", "new", "throw", "else", "case", "package", "import", "public", "private",
    "protected", "static", "final", "abstract", "class", "interface", "record", "enum",
    "extends", "implements", "yield", "assert", "do", "try", "catch", "finally",
}


class JavaBackend(RegexBackend):
    """Extracts classes, records and annotated route handlers from Java files."""

    language = "java"
    extensions = (".java",)
    types = TYPES

    def scan(self, text: str, unit: SourceUnit) -> None:
        text = mask_comments(text)
        unit.imports.extend(_IMPORT.findall(text))
        package_match = _PACKAGE.search(text)
        package = package_match.group(1) if package_match else None
        spans = scan_at_annotations(text)
        plain = blank_spans(text, spans)
        unit.types.extend(self._scan_types(text, plain, 0, len(text), spans, package))
        for decl in unit.types:
            unit.routes.extend(annotated_routes(decl))

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
    ) -> List[TypeDecl]:
        found: List[TypeDecl] = []
        cursor = start
        for match in _TYPE.finditer(plain, start, end):
            if match.start() < cursor:
                continue
            header_end = match.end()
            components = ""
            if match.group("kind") == "record":
                paren = plain.find("(", header_end)
                close = find_matching(plain, paren, "(", ")") if paren >= 0 else -1
                if close > 0:
                    components = text[paren + 1 : close]
                    header_end = close + 1
            body, body_start = find_brace_body(plain, header_end, stop=";")
            header = plain[header_end : body_start - 1] if body_start > 0 else ""
            decl = TypeDecl(
                name=match.group("name"),
                namespace=package,
                bases=_bases(header),
                annotations=attached_annotations(text, spans, match.start()),
                line=line_of(text, match.start()),
                kind=match.group("kind"),
            )
            if components:
                decl.fields.extend(self._record_components(components, decl.line))
            if decl.kind == "enum" and body:
                decl.fields.extend(self._enum_constants(plain, body_start, body))
            body_end = body_start + len(body) if body_start > 0 else header_end
            nested: List[TypeDecl] = []
            if body:
                nested = self._scan_types(text, plain, body_start, body_end, spans, package)
                self._scan_members(text, plain, body_start, body_end, spans, decl)
            found.append(decl)
            found.extend(nested)
            cursor = body_end
        return found

    def _record_components(self, components: str, line: int) -> List[FieldDecl]:
        fields: List[FieldDecl] = []
        for param in self._parse_params(components):
            fields.append(self._field(param.name, param.type, line, None, param.annotations))
        return fields

    def _enum_constants(self, plain: str, body_start: int, body: str) -> List[FieldDecl]:
        constants = split_top_level(body, ";")
        fields: List[FieldDecl] = []
        for item in split_top_level(constants[0]) if constants else []:
            match = _CONSTANT.match(item)
            if match:
                offset = body_start + body.find(item)
                fields.append(self.make_field(match.group(1), "", line_of(plain, offset)))
        return fields

    def _scan_members(
        self,
        text: str,
        plain: str,
        start: int,
        end: int,
        spans: Sequence[AttributeSpan],
        decl: TypeDecl,
    ) -> None:
        excluded: List[Tuple[int, int]] = []
        nested_cursor = start
        for match in _TYPE.finditer(plain, start, end):
            if match.start() < nested_cursor:
                continue
            _, body_start = find_brace_body(plain, match.end())
            close = find_matching(plain, body_start - 1) if body_start > 0 else -1
            nested_cursor = close + 1 if close > 0 else match.end()
            excluded.append((match.start(), nested_cursor))

        def _is_excluded(index: int) -> bool:
            return any(low <= index < high for low, high in excluded)

        cursor = start
        method_extents: List[Tuple[int, int]] = []
        for match in _METHOD.finditer(plain, start, end):
            if match.start() < cursor or _is_excluded(match.start()):
                continue
            ret = " ".join(match.group("ret").split())
            if ret.split(" ")[0] in _KEYWORDS or match.group("name") in _KEYWORDS:
                continue
            paren = match.end() - 1
            close = find_matching(plain, paren, "(", ")")
            if close < 0:
                continue
            body, body_start = find_brace_body(plain, close + 1, stop=";=")
            extent_end = body_start + len(body) + 1 if body_start > 0 else close + 1
            method_extents.append((match.start(), extent_end))
            cursor = extent_end
            mods = match.group("mods").split()
            decl.methods.append(
                MethodDecl(
                    name=match.group("name"),
                    params=self._parse_params(text[paren + 1 : close]),
                    return_type=ret,
                    is_async=ret.startswith(("CompletableFuture", "Mono", "Flux", "Uni")),
                    visibility=next((mod for mod in mods if mod in _VISIBILITY), "package"),
                    annotations=attached_annotations(text, spans, match.start()),
                    line=line_of(text, match.start()),
                    owner=decl.name,
                )
            )
        excluded.extend(method_extents)
        if decl.kind == "enum":
            return

        for match in _FIELD.finditer(plain, start, end):
            if _is_excluded(match.start()):
                continue
            type_text = match.group("type")
            if type_text in _KEYWORDS or "static" in match.group("mods").split():
                continue
            default = match.group("default")
            decl.fields.append(
                self._field(
                    match.group("name"),
                    type_text,
                    line_of(text, match.start()),
                    default.strip() if default else None,
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
        optional = any(item.name in _OPTIONAL_ANNOTATIONS for item in annotations)
        if any(item.name in _REQUIRED_ANNOTATIONS for item in annotations):
            optional = False
        alias = None
        for annotation in annotations:
            if annotation.name in _NAME_ANNOTATIONS:
                alias = annotation.string_arg("value")
        return self.make_field(
            name, " ".join(raw_type.split()), line,
            default=default, optional=optional, alias=alias, annotations=annotations,
        )

    def _parse_params(self, params_text: str) -> List[Param]:
        params: List[Param] = []
        for segment in split_top_level(params_text):
            spans = scan_at_annotations(segment)
            body = segment[spans[-1].end :].strip() if spans else segment
            match = _PARAM.match(body)
            if not match:
                continue
            annotations = [item for span in spans for item in span.annotations]
            required = True
            for annotation in annotations:
                if annotation.kwargs.get("required", "").strip() == "false":
                    required = False
                if "defaultValue" in annotation.kwargs or annotation.name in _OPTIONAL_ANNOTATIONS:
                    required = False
            type_text = " ".join(match.group("type").split())
            if type_text.startswith("Optional<"):
                required = False
            params.append(
                Param(
                    name=match.group("name"),
                    type=type_text,
                    required=required,
                    annotations=annotations,
                )
            )
        return params


def annotated_routes(decl: TypeDecl) -> List[RouteFact]:
    """Routes declared by mapping annotations on a controller class and its methods."""
    prefix = ""
    framework = "spring"
    mapping = decl.annotation("RequestMapping")
    controller = decl.annotation("Controller")
    resource = decl.annotation("Path")
    if mapping is not None:
        prefix = mapping_paths(mapping)[0]
    elif controller is not None and controller.args:
        prefix = mapping_paths(controller)[0]
        framework = "micronaut"
    elif resource is not None:
        prefix = mapping_paths(resource)[0]
        framework = "jaxrs"
    routes: List[RouteFact] = []
    for method in decl.methods:
        for verb, paths, route_framework in method_mappings(method, framework):
            for path in paths:
                routes.append(
                    RouteFact(
                        method=verb,
                        path=path,
                        handler=method.name,
                        owner=decl.name,
                        prefix=prefix,
                        line=method.line,
                        framework=route_framework,
                    )
                )
    return routes


def method_mappings(method: MethodDecl, framework: str) -> List[Tuple[str, List[str], str]]:
    mappings: List[Tuple[str, List[str], str]] = []
    path_annotation = method.annotation("Path")
    for annotation in method.annotations:
        if annotation.name in _SPRING_VERBS:
            mappings.append((_SPRING_VERBS[annotation.name], mapping_paths(annotation), "spring"))
        elif annotation.name == "RequestMapping":
            verbs = _request_methods(annotation) or ["GET"]
            for verb in verbs:
                mappings.append((verb, mapping_paths(annotation), "spring"))
        elif annotation.name in _MICRONAUT_VERBS and framework != "spring":
            mappings.append((_MICRONAUT_VERBS[annotation.name], mapping_paths(annotation), "micronaut"))
        elif annotation.name in _JAXRS_VERBS and not annotation.args:
            paths = mapping_paths(path_annotation) if path_annotation is not None else [""]
            mappings.append((annotation.name, paths, "jaxrs"))
    return mappings


def mapping_paths(annotation: Annotation) -> List[str]:
    """Return the path templates of a mapping annotation (``value``, ``path``, ``uri``)."""
    raw = None
    for key in ("value", "path", "uri", "uris"):
        if key in annotation.kwargs:
            raw = annotation.kwargs[key]
            break
    if raw is None and annotation.args:
        raw = annotation.args[0]
    if raw is None:
        return [""]
    raw = raw.strip()
    if raw.startswith(("{", "[", "arrayOf(")):
        return list_literal(raw) or [""]
    return [unquote(raw)] if raw.startswith("\"") else [""]


def _request_methods(annotation: Annotation) -> List[str]:
    raw = annotation.kwargs.get("method")
    if not raw:
        return []
    items = list_literal(raw) if raw.strip().startswith("{") else [raw]
    return [item.strip().split(".")[-1].upper() for item in items if item.strip()]


def _bases(header: str) -> List[str]:
    bases: List[str] = []
    match = re.search(r"\bextends\s+(.+?)(?=\bimplements\b|\bpermits\b|$)", header, re.DOTALL)
    if match:
        bases.extend(split_top_level(match.group(1)))
    match = re.search(r"\bimplements\s+(.+?)(?=\bpermits\b|$)", header, re.DOTALL)
    if match:
        bases.extend(split_top_level(match.group(1)))
    return [" ".join(base.split()) for base in bases]


__all__ = ["JavaBackend", "TYPES", "annotated_routes", "mapping_paths", "method_mappings"]
