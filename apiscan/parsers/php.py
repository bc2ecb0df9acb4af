"""PHP backend: Laravel route files, Slim apps, Symfony attribute controllers."""

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

from ..models import (
    Annotation,
    FieldDecl,
    MethodDecl,
    Param,
    ResourceFact,
    RouteFact,
    SourceUnit,
    TypeDecl,
    TypeKind,
    is_string_literal,
    unquote,
)
from ..paths import join_paths
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
    parse_arguments,
    scan_bracket_attributes,
    split_top_level,
)
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, FieldShape, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): ["string"],
            ("integer", ""): ["int", "integer"],
            ("number", ""): ["float", "double"],
            ("boolean", ""): ["bool", "boolean", "true", "false"],
            ("string", "date-time"): [
                "DateTime", "DateTimeInterface", "DateTimeImmutable", "Carbon", "CarbonImmutable",
                "\\DateTime", "\\DateTimeImmutable", "\\DateTimeInterface",
            ],
            ("string", "binary"): ["UploadedFile"],
            DEFAULT_MAPPING: ["mixed", "object", "stdClass"],
            VOID_MAPPING: ["void", "null", "never"],
        }
    ),
    nullable_prefixes=("?",),
    union_nulls=("null",),
    sequence_prefixes=("array<", "list<", "Collection<", "iterable<"),
    sequence_suffixes=("[]",),
    strip_prefixes=("\\",),
)
# ``array`` and ``iterable`` carry no element type but are still arrays.
_ARRAY_TYPES = ("array", "iterable", "Collection")

_NAMESPACE = re.compile(r"^\s*namespace\s+([\w\\]+)\s*;", re.MULTILINE)
_USE = re.compile(r"^\s*use\s+([\w\\]+)(?:\s+as\s+\w+)?\s*;", re.MULTILINE)
_TYPE = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:abstract|final|readonly)\s+)*)(?P<kind>class|interface|trait|enum)\s+"
    r"(?P<name>[A-Za-z_]\w*)"
)
_PROPERTY = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:public|protected|private|static|readonly|var)\s+)+)"
    r"(?P<type>\??[\w\\|]+\s+)?\$(?P<name>\w+)\s*(?:=\s*(?P<default>[^;]+))?;"
)
_METHOD = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:public|protected|private|static|abstract|final)\s+)*)"
    r"function\s+&?(?P<name>\w+)\s*\("
)
_RETURN = re.compile(r"\s*:\s*(?P<ret>\??[\w\\|]+)")
_PARAM = re.compile(
    r"^(?P<mods>(?:(?:public|protected|private|readonly)\s+)*)(?P<type>\??[\w\\|]+\s+)?&?(?:\.\.\.)?"
    r"\$(?P<name>\w+)\s*(?:=\s*(?P<default>.+))?$",
    re.DOTALL,
)
_ROUTE_START = re.compile(r"(?:(?P<facade>\bRoute\s*::\s*)|\$(?P<var>\w+)\s*->\s*)(?=\w+\s*\()")
_CHAIN_LINK = re.compile(r"\s*(?:::|->)?\s*(?P<name>\w+)\s*\(")

_VERBS = ("get", "post", "put", "patch", "delete", "options")
_VISIBILITY = ("public", "protected", "private")
_NAME_ATTRIBUTES = ("SerializedName", "JsonProperty")


class PhpBackend(RegexBackend):
    """Extracts classes, typed properties and Laravel/Slim/Symfony routes from PHP files."""

    language = "php"
    extensions = (".php",)
    types = TYPES

    def map_type(self, raw: str) -> Tuple[str, str]:
        text = raw.strip().lstrip("?")
        if text.split("<")[0] in _ARRAY_TYPES:
            return ("array", "")
        return super().map_type(raw)

    def classify(self, raw: str) -> FieldShape:
        text = raw.strip()
        if text in _ARRAY_TYPES:
            return FieldShape(TypeKind.SEQUENCE, element_type="mixed")
        return super().classify(raw)

    def scan(self, text: str, unit: SourceUnit) -> None:
        text = mask_comments(text, quotes="\"'")
        unit.imports.extend(_USE.findall(text))
        namespace_match = _NAMESPACE.search(text)
        namespace = namespace_match.group(1) if namespace_match else None
        spans = scan_bracket_attributes(text, opener="#[", separators=(":",))
        plain = blank_spans(text, spans)
        extents: List[Tuple[int, int]] = []
        for match in _TYPE.finditer(plain):
            if any(low <= match.start() < high for low, high in extents):
                continue
            body, body_start = find_brace_body(plain, match.end(), stop=";")
            if body_start < 0:
                continue
            header = plain[match.end() : body_start - 1]
            decl = TypeDecl(
                name=match.group("name"),
                namespace=namespace,
                bases=_bases(header),
                annotations=attached_annotations(text, spans, match.start()),
                line=line_of(text, match.start()),
                kind=match.group("kind"),
            )
            body_end = body_start + len(body)
            self._scan_members(text, plain, body_start, body_end, spans, decl)
            unit.types.append(decl)
            extents.append((match.start(), body_end))
        for decl in unit.types:
            unit.routes.extend(_symfony_routes(decl))
        self._route_calls(plain, 0, len(plain), "", None, unit)

    # ------------------------------------------------------------------
    # Classes
    # ------------------------------------------------------------------

    def _scan_members(
        self,
        text: str,
        plain: str,
        start: int,
        end: int,
        spans: Sequence[AttributeSpan],
        decl: TypeDecl,
    ) -> None:
        method_extents: List[Tuple[int, int]] = []
        cursor = start
        for match in _METHOD.finditer(plain, start, end):
            if match.start() < cursor:
                continue
            paren = match.end() - 1
            close = find_matching(plain, paren, "(", ")")
            if close < 0:
                continue
            ret_match = _RETURN.match(plain, close + 1)
            body, body_start = find_brace_body(plain, close + 1, stop=";")
            extent_end = body_start + len(body) + 1 if body_start > 0 else close + 1
            method_extents.append((match.start(), extent_end))
            cursor = extent_end
            params = self._parse_params(text[paren + 1 : close])
            mods = match.group("mods").split()
            name = match.group("name")
            decl.methods.append(
                MethodDecl(
                    name=name,
                    params=params,
                    return_type=ret_match.group("ret") if ret_match else "",
                    visibility=next((mod for mod in mods if mod in _VISIBILITY), "public"),
                    annotations=attached_annotations(text, spans, match.start()),
                    line=line_of(text, match.start()),
                    owner=decl.name,
                )
            )
            if name == "__construct":
                decl.fields.extend(self._promoted_properties(text[paren + 1 : close], line_of(text, match.start())))
        for match in _PROPERTY.finditer(plain, start, end):
            if any(low <= match.start() < high for low, high in method_extents):
                continue
            if "static" in match.group("mods").split():
                continue
            default = match.group("default")
            decl.fields.append(
                self._field(
                    match.group("name"),
                    (match.group("type") or "mixed").strip(),
                    line_of(text, match.start()),
                    default.strip() if default else None,
                    attached_annotations(text, spans, match.start()),
                )
            )

    def _promoted_properties(self, params_text: str, line: int) -> List[FieldDecl]:
        fields: List[FieldDecl] = []
        for segment in split_top_level(params_text):
            attribute_spans = scan_bracket_attributes(segment, opener="#[", separators=(":",))
            body = segment[attribute_spans[-1].end :].strip() if attribute_spans else segment
            match = _PARAM.match(body)
            if not match or not match.group("mods").strip():
                continue
            default = match.group("default")
            fields.append(
                self._field(
                    match.group("name"),
                    (match.group("type") or "mixed").strip(),
                    line,
                    default.strip() if default else None,
                    [item for span in attribute_spans for item in span.annotations],
                )
            )
        return fields

    def _field(
        self, name: str, raw_type: str, line: int, default: Optional[str], annotations: List[Annotation]
    ) -> FieldDecl:
        alias = None
        for annotation in annotations:
            if annotation.name in _NAME_ATTRIBUTES:
                alias = annotation.string_arg("name", "serializedName")
        return self.make_field(
            name, raw_type, line, default=default, optional=default is not None, alias=alias, annotations=annotations
        )

    def _parse_params(self, params_text: str) -> List[Param]:
        params: List[Param] = []
        for segment in split_top_level(params_text):
            attribute_spans = scan_bracket_attributes(segment, opener="#[", separators=(":",))
            body = segment[attribute_spans[-1].end :].strip() if attribute_spans else segment
            match = _PARAM.match(body)
            if not match:
                continue
            type_text = (match.group("type") or "").strip()
            default = match.group("default")
            params.append(
                Param(
                    name=match.group("name"),
                    type=type_text,
                    required=default is None and not type_text.startswith("?"),
                    default=default.strip() if default else None,
                    annotations=[item for span in attribute_spans for item in span.annotations],
                )
            )
        return params

    # ------------------------------------------------------------------
    # Laravel / Slim route calls
    # ------------------------------------------------------------------

    def _route_calls(
        self,
        plain: str,
        start: int,
        end: int,
        prefix: str,
        controller: Optional[str],
        unit: SourceUnit,
    ) -> None:
        """Walk ``Route::...`` and ``$app->...`` call chains, recursing into groups."""
        cursor = start
        for match in _ROUTE_START.finditer(plain, start, end):
            if match.start() < cursor:
                continue
            facade = match.group("facade") is not None
            if not facade and match.group("var") == "this":
                continue
            links, chain_end = _chain(plain, match.end())
            if not links:
                continue
            framework = "laravel" if facade else "slim"
            line = line_of(plain, match.start())
            names = [name for name, _, _ in links]
            group_prefix = prefix
            group_controller = controller
            for name, args, _ in links:
                arguments = split_top_level(args)
                if name == "prefix" and arguments:
                    group_prefix = join_paths(group_prefix, unquote(arguments[0]))
                elif name == "controller" and arguments:
                    group_controller = _class_name(arguments[0])
            if "group" in names:
                name, args, args_start = links[names.index("group")]
                arguments = split_top_level(args)
                if arguments and arguments[0].startswith("["):
                    _, options = parse_arguments(arguments[0][1:-1], ("=>",))
                    if "prefix" in options:
                        group_prefix = join_paths(group_prefix, unquote(options["prefix"]))
                    if "controller" in options:
                        group_controller = _class_name(options["controller"])
                elif not facade and arguments and is_string_literal(arguments[0]):
                    group_prefix = join_paths(group_prefix, unquote(arguments[0]))
                body, body_start = find_brace_body(plain, args_start)
                if body_start > 0:
                    self._route_calls(plain, body_start, body_start + len(body), group_prefix, group_controller, unit)
            elif names[0] in ("resource", "apiResource") and facade:
                unit.resources.append(_resource(links, group_prefix, group_controller, line))
            else:
                routes = _verb_routes(links, prefix, group_controller, framework, line)
                if not routes:
                    continue
                unit.routes.extend(routes)
            cursor = chain_end


def _chain(text: str, position: int) -> Tuple[List[Tuple[str, str, int]], int]:
    """Parse ``name(args)->name(args)...`` into ``(name, args, args_start)`` links."""
    links: List[Tuple[str, str, int]] = []
    while True:
        match = _CHAIN_LINK.match(text, position)
        if not match or (links and "->" not in text[position : match.start("name")]):
            return links, position
        paren = match.end() - 1
        close = find_matching(text, paren, "(", ")", quotes="\"'")
        if close < 0:
            return links, position
        links.append((match.group("name"), text[paren + 1 : close], paren + 1))
        position = close + 1


def _verb_routes(
    links: Sequence[Tuple[str, str, int]],
    prefix: str,
    controller: Optional[str],
    framework: str,
    line: int,
) -> List[RouteFact]:
    verb_link = next((link for link in links if link[0] in _VERBS + ("any", "match", "map")), None)
    if verb_link is None:
        return []
    name, args, _ = verb_link
    arguments = split_top_level(args)
    verbs: List[str] = []
    if name in _VERBS:
        verbs = [name.upper()]
    elif name == "any":
        verbs = ["GET", "POST", "PUT", "PATCH", "DELETE"]
    elif name in ("match", "map") and len(arguments) >= 2:
        verbs = [item.upper() for item in list_literal(arguments[0])]
        arguments = arguments[1:]
    if not verbs or not arguments or not is_string_literal(arguments[0]):
        return []
    if framework == "slim" and len(arguments) < 2:
        return []
    handler, owner = _handler(arguments[1] if len(arguments) > 1 else "", controller)
    if handler is None:
        return []
    return [
        RouteFact(
            method=verb,
            path=unquote(arguments[0]),
            handler=handler,
            owner=owner,
            prefix=prefix,
            line=line,
            framework=framework,
        )
        for verb in verbs
    ]


def _handler(raw: str, controller: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Resolve a Laravel/Slim handler expression to ``(action, controller)``."""
    text = raw.strip()
    if not text:
        return "lambda", None
    if text.startswith(("function", "fn", "static function", "static fn")):
        return "lambda", None
    if text.startswith("["):
        items = split_top_level(text[1:-1])
        if len(items) == 2:
            return unquote(items[1]), _class_name(items[0])
        return None, None
    if text.endswith("::class"):
        return "__invoke", _class_name(text)
    if is_string_literal(text):
        value = unquote(text)
        for separator in ("@", ":"):
            if separator in value:
                owner, _, action = value.rpartition(separator)
                return action, owner.rpartition("\\")[2]
        if controller is not None:
            return value, controller
        return None, None
    return None, None


def _resource(
    links: Sequence[Tuple[str, str, int]], prefix: str, controller: Optional[str], line: int
) -> ResourceFact:
    name, args, _ = links[0]
    arguments = split_top_level(args)
    resource = ResourceFact(
        path=unquote(arguments[0]) if arguments else "",
        controller=_class_name(arguments[1]) if len(arguments) > 1 else (controller or ""),
        is_api=name == "apiResource",
        line=line,
        framework="laravel",
        prefix=prefix,
    )
    for link_name, link_args, _ in links[1:]:
        items = list_literal(link_args) if link_args.strip().startswith("[") else [
            unquote(item) for item in split_top_level(link_args)
        ]
        if link_name == "only":
            resource.only = items
        elif link_name == "except":
            resource.except_ = items
    return resource


def _class_name(text: str) -> str:
    value = text.strip()
    if value.endswith("::class"):
        value = value[: -len("::class")]
    return unquote(value).rpartition("\\")[2]


def _symfony_routes(decl: TypeDecl) -> List[RouteFact]:
    class_route = decl.annotation("Route")
    prefix = _route_path(class_route) if class_route is not None else ""
    routes: List[RouteFact] = []
    for method in decl.methods:
        for annotation in method.annotations:
            if annotation.name not in ("Route", "Get", "Post", "Put", "Patch", "Delete"):
                continue
            if annotation.name == "Route":
                raw_methods = annotation.kwargs.get("methods")
                verbs = [item.upper() for item in list_literal(raw_methods)] if raw_methods else ["GET"]
            else:
                verbs = [annotation.name.upper()]
            for verb in verbs:
                routes.append(
                    RouteFact(
                        method=verb,
                        path=_route_path(annotation),
                        handler=method.name,
                        owner=decl.name,
                        prefix=prefix,
                        line=method.line,
                        framework="symfony",
                    )
                )
    return routes


def _route_path(annotation: Annotation) -> str:
    return annotation.string_arg("path") or ""


def _bases(header: str) -> List[str]:
    bases: List[str] = []
    match = re.search(r"\bextends\s+([\w\\]+)", header)
    if match:
        bases.append(match.group(1).rpartition("\\")[2])
    match = re.search(r"\bimplements\s+([^{]+)", header)
    if match:
        bases.extend(item.strip().rpartition("\\")[2] for item in match.group(1).split(",") if item.strip())
    return bases


__all__ = ["PhpBackend", "TYPES"]
