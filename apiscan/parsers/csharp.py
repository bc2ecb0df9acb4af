"""C# backend: ASP.NET controllers, minimal APIs, FastEndpoints/Nancy modules."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence, Tuple

from ..models import (
    Annotation,
    FieldDecl,
    MethodDecl,
    Param,
    RouteFact,
    SourceUnit,
    TypeDecl,
)
from .base import RegexBackend
from .text import (
    AttributeSpan,
    attached_annotations,
    find_brace_body,
    find_matching,
    line_of,
    mask_comments,
    scan_bracket_attributes,
    split_top_level,
)
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): ["string", "String", "char", "Char"],
            ("integer", "int32"): [
                "int", "Int32", "uint", "UInt32", "short", "Int16", "ushort", "UInt16",
                "byte", "Byte", "sbyte", "SByte",
            ],
            ("integer", "int64"): ["long", "Int64", "ulong", "UInt64"],
            ("number", "float"): ["float", "Single"],
            ("number", "double"): ["double", "Double", "decimal", "Decimal"],
            ("boolean", ""): ["bool", "Boolean"],
            ("string", "date-time"): ["DateTime", "DateTimeOffset"],
            ("string", "date"): ["DateOnly"],
            ("string", "time"): ["TimeOnly", "TimeSpan"],
            ("string", "uuid"): ["Guid"],
            ("string", "binary"): ["byte[]", "Byte[]", "IFormFile", "Stream"],
            ("string", "uri"): ["Uri"],
            DEFAULT_MAPPING: ["object", "dynamic", "IActionResult", "IResult", "ActionResult"],
            VOID_MAPPING: ["void", "Task", "ValueTask"],
        }
    ),
    nullable_suffixes=("?",),
    optional_wrappers=("Nullable<",),
    wrappers=("Task<", "ValueTask<", "ActionResult<", "Ok<"),
    sequence_prefixes=(
        "List<", "IList<", "IEnumerable<", "ICollection<", "IReadOnlyList<",
        "IReadOnlyCollection<", "HashSet<", "ISet<", "IAsyncEnumerable<",
    ),
    sequence_suffixes=("[]",),
    map_prefixes=("Dictionary<", "IDictionary<", "IReadOnlyDictionary<"),
    strip_prefixes=("global::",),
)

_MODIFIERS = (
    r"public|private|protected|internal|static|virtual|override|async|abstract|sealed"
    r"|new|extern|unsafe|partial|readonly|required"
)

_USING = re.compile(r"^\s*using\s+(?:static\s+)?([\w.]+)\s*;", re.MULTILINE)
_NAMESPACE = re.compile(r"^\s*namespace\s+([\w.]+)", re.MULTILINE)
_TYPE = re.compile(
    rf"(?:(?<=[\s;{{}}\]])|^)(?P<mods>(?:(?:{_MODIFIERS}|file)\s+)*)"
    r"(?P<kind>class|interface|struct|record(?:\s+(?:class|struct))?)\s+"
    r"(?P<name>[A-Za-z_]\w*)(?P<generics>\s*<[^>{]*>)?"
)
_PROPERTY = re.compile(
    rf"(?:(?<=[\s;{{}}\]])|^)(?P<mods>(?:(?:{_MODIFIERS})\s+)*)"
    r"(?P<type>[A-Za-z_][\w<>\[\],.?\s]*?)\s+(?P<name>[A-Za-z_]\w*)\s*"
    r"\{\s*(?:(?:public|private|protected|internal)\s+)?(?:get|set|init)\b"
)
_PROPERTY_DEFAULT = re.compile(r"\}\s*=\s*(?P<default>[^;]+);")
_FIELD = re.compile(
    r"(?:(?<=[\s;{}\]])|^)(?P<mods>(?:(?:public|internal|readonly|required)\s+)+)"
    r"(?P<type>[A-Za-z_][\w<>\[\],.?\s]*?)\s+(?P<name>[A-Za-z_]\w*)\s*(?:=\s*(?P<default>[^;{]+))?;"
)
_METHOD = re.compile(
    rf"(?:(?<=[\s;{{}}\]])|^)(?P<mods>(?:(?:{_MODIFIERS})\s+)+)"
    r"(?P<ret>[A-Za-z_(][\w<>\[\],.?()\s]*?)\s+(?P<name>[A-Za-z_]\w*)\s*(?:<[^>()]*>)?\s*\("
)
_PARAM = re.compile(
    r"^(?:(?:this|ref|out|in|params|scoped)\s+)*(?P<type>.+?)\s+@?(?P<name>\w+)\s*(?:=\s*(?P<default>.+))?$",
    re.DOTALL,
)
_MINIMAL_API = re.compile(
    r"(?P<target>\w+)\s*\.\s*Map(?P<verb>Get|Post|Put|Delete|Patch)\s*\(\s*@?\"(?P<path>[^\"]*)\"\s*,\s*"
)
_MAP_GROUP = re.compile(
    r"(?:var|[\w.<>]+)\s+(?P<var>\w+)\s*=\s*(?P<parent>\w+)\s*\.\s*MapGroup\s*\(\s*@?\"(?P<path>[^\"]*)\"\s*\)"
)
_VERB_CALL = re.compile(
    r"(?<![\w.])(?P<verb>Get|Post|Put|Delete|Patch)\s*(?:\(\s*@?\"(?P<path>[^\"]*)\"|\[\s*\"(?P<legacy>[^\"]*)\"\s*\])"
)
_HANDLER_REFERENCE = re.compile(r"(?:[A-Za-z_]\w*\.)*(?P<name>[A-Za-z_]\w*)\s*[),]")

_HTTP_ATTRIBUTES = {
    "HttpGet": "GET",
    "HttpPost": "POST",
    "HttpPut": "PUT",
    "HttpDelete": "DELETE",
    "HttpPatch": "PATCH",
    "HttpHead": "HEAD",
    "HttpOptions": "OPTIONS",
}
_VISIBILITY = ("public", "private", "protected", "internal")
_REQUIRED_ATTRIBUTES = ("Required", "BindRequired")
_NAME_ATTRIBUTES = ("JsonPropertyName", "JsonProperty", "DataMember")


class CSharpBackend(RegexBackend):
    """Extracts classes, records, properties and ASP.NET routes from C# files."""

    language = "csharp"
    extensions = (".cs",)
    types = TYPES

    def scan(self, text: str, unit: SourceUnit) -> None:
        text = mask_comments(text)
        unit.imports.extend(_USING.findall(text))
        spans = scan_bracket_attributes(text)
        namespaces = [(match.start(), match.group(1)) for match in _NAMESPACE.finditer(text)]
        for decl, _, _ in self._scan_types(text, 0, len(text), spans, namespaces):
            unit.types.append(decl)
        for decl in unit.types:
            unit.routes.extend(self._controller_routes(decl))
            unit.routes.extend(self._endpoint_module_routes(text, decl))
        unit.routes.extend(self._minimal_api_routes(text))

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def _scan_types(
        self,
        text: str,
        start: int,
        end: int,
        spans: Sequence[AttributeSpan],
        namespaces: Sequence[Tuple[int, str]],
    ) -> List[Tuple[TypeDecl, int, int]]:
        found: List[Tuple[TypeDecl, int, int]] = []
        cursor = start
        for match in _TYPE.finditer(text, start, end):
            if match.start() < cursor:
                continue
            name = match.group("name")
            kind = match.group("kind").split()[0]
            header_end = match.end()
            params_text = ""
            paren = _skip_spaces(text, header_end)
            if paren < end and text[paren] == "(":
                close = find_matching(text, paren, "(", ")")
                if close > 0:
                    params_text = text[paren + 1 : close]
                    header_end = close + 1
            bases: List[str] = []
            body, body_start = find_brace_body(text, header_end, stop=";")
            header_limit = body_start - 1 if body_start > 0 else _statement_end(text, header_end)
            header_tail = text[header_end:header_limit]
            if ":" in header_tail:
                base_text = header_tail.split(":", 1)[1].split(" where ")[0]
                bases = [_base_name(item) for item in split_top_level(base_text)]
            decl = TypeDecl(
                name=name,
                namespace=_namespace_at(namespaces, match.start()),
                bases=[base for base in bases if base],
                annotations=attached_annotations(text, spans, match.start()),
                line=line_of(text, match.start()),
                kind=kind,
            )
            if params_text:
                decl.fields.extend(self._record_fields(params_text, decl.line))
            body_end = body_start + len(body) if body_start > 0 else header_end
            if body:
                nested = self._scan_types(text, body_start, body_end, spans, namespaces)
                excluded = [(nested_start, nested_end) for _, nested_start, nested_end in nested]
                self._scan_members(text, body_start, body_end, excluded, spans, decl)
                found.append((decl, match.start(), body_end))
                found.extend(nested)
            else:
                found.append((decl, match.start(), body_end))
            cursor = body_end
        return found

    def _record_fields(self, params_text: str, line: int) -> List[FieldDecl]:
        fields: List[FieldDecl] = []
        for param in self._parse_params(params_text):
            fields.append(self._field(param.name, param.type, line, param.default, param.annotations))
        return fields

    def _scan_members(
        self,
        text: str,
        start: int,
        end: int,
        excluded: Sequence[Tuple[int, int]],
        spans: Sequence[AttributeSpan],
        decl: TypeDecl,
    ) -> None:
        def _inside_nested(index: int) -> bool:
            return any(low <= index < high for low, high in excluded)

        taken: List[Tuple[int, int]] = []
        for match in _PROPERTY.finditer(text, start, end):
            if _inside_nested(match.start()) or _is_keyword(match.group("type")):
                continue
            mods = match.group("mods").split()
            if "static" in mods:
                continue
            accessor_end = find_matching(text, text.rfind("{", match.start(), match.end()))
            default = None
            if accessor_end > 0:
                default_match = _PROPERTY_DEFAULT.match(text, accessor_end)
                if default_match:
                    default = default_match.group("default").strip()
                taken.append((match.start(), accessor_end))
            annotations = attached_annotations(text, spans, match.start())
            field = self._field(
                match.group("name"),
                match.group("type"),
                line_of(text, match.start()),
                default,
                annotations,
                required_modifier="required" in mods,
            )
            decl.fields.append(field)

        for match in _FIELD.finditer(text, start, end):
            if _inside_nested(match.start()) or any(low <= match.start() < high for low, high in taken):
                continue
            if "public" not in match.group("mods").split() or _is_keyword(match.group("type")):
                continue
            default = match.group("default")
            decl.fields.append(
                self._field(
                    match.group("name"),
                    match.group("type"),
                    line_of(text, match.start()),
                    default.strip() if default else None,
                    attached_annotations(text, spans, match.start()),
                )
            )

        for match in _METHOD.finditer(text, start, end):
            if _inside_nested(match.start()):
                continue
            ret = match.group("ret").strip()
            if _is_keyword(ret.split()[0] if ret.split() else ret):
                continue
            paren = match.end() - 1
            close = find_matching(text, paren, "(", ")")
            if close < 0:
                continue
            mods = match.group("mods").split()
            decl.methods.append(
                MethodDecl(
                    name=match.group("name"),
                    params=self._parse_params(text[paren + 1 : close]),
                    return_type=ret,
                    is_async="async" in mods,
                    visibility=next((mod for mod in mods if mod in _VISIBILITY), "private"),
                    annotations=attached_annotations(text, spans, match.start()),
                    line=line_of(text, match.start()),
                    owner=decl.name,
                )
            )

    def _field(
        self,
        name: str,
        raw_type: str,
        line: int,
        default: Optional[str],
        annotations: List[Annotation],
        required_modifier: bool = False,
    ) -> FieldDecl:
        type_text = " ".join(raw_type.split())
        optional = type_text.endswith("?")
        if optional:
            type_text = type_text[:-1].strip()
        if required_modifier or any(item.name in _REQUIRED_ATTRIBUTES for item in annotations):
            optional = False
        alias = None
        for annotation in annotations:
            if annotation.name in _NAME_ATTRIBUTES:
                alias = annotation.string_arg("Name", "PropertyName")
        field = self.make_field(
            name, type_text, line, default=default, optional=optional, alias=alias, annotations=annotations
        )
        return field

    def _parse_params(self, params_text: str) -> List[Param]:
        params: List[Param] = []
        for segment in split_top_level(params_text):
            spans = scan_bracket_attributes(segment)
            annotations: List[Annotation] = []
            body = segment
            if spans and spans[0].start == 0:
                for span in spans:
                    annotations.extend(span.annotations)
                body = segment[spans[-1].end :].strip()
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
                    annotations=annotations,
                )
            )
        return params

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def _controller_routes(self, decl: TypeDecl) -> List[RouteFact]:
        is_controller = (
            decl.name.endswith("Controller")
            or decl.annotation("ApiController", "Route") is not None
            or any(base.startswith(("Controller", "ControllerBase")) for base in decl.bases)
        )
        if not is_controller:
            return []
        controller = decl.name[: -len("Controller")] if decl.name.endswith("Controller") else decl.name
        class_route = decl.annotation("Route")
        prefix = (class_route.string_arg("template") or "") if class_route else ""
        routes: List[RouteFact] = []
        for method in decl.methods:
            method_route = method.annotation("Route")
            for annotation in method.annotations:
                verb = _HTTP_ATTRIBUTES.get(annotation.name)
                if verb is None:
                    continue
                template = annotation.string_arg("template")
                if template is None and method_route is not None:
                    template = method_route.string_arg("template")
                path = template or ""
                route_prefix = prefix
                if path.startswith(("/", "~/")):
                    path = path.lstrip("~")
                    route_prefix = ""
                routes.append(
                    RouteFact(
                        method=verb,
                        path=_expand_tokens(path, controller, method.name),
                        handler=method.name,
                        owner=decl.name,
                        prefix=_expand_tokens(route_prefix, controller, method.name),
                        line=method.line,
                        framework="aspnet",
                    )
                )
        return routes

    def _endpoint_module_routes(self, text: str, decl: TypeDecl) -> List[RouteFact]:
        framework = ""
        if any(base.startswith("Endpoint") for base in decl.bases):
            framework = "fastendpoints"
        elif any(base in ("NancyModule", "CarterModule") for base in decl.bases):
            framework = "nancy"
        if not framework:
            return []
        body, offset = find_brace_body(text, _declaration_index(text, decl))
        routes: List[RouteFact] = []
        for match in _VERB_CALL.finditer(body):
            path = match.group("path") if match.group("path") is not None else match.group("legacy")
            routes.append(
                RouteFact(
                    method=match.group("verb").upper(),
                    path=path or "",
                    handler=decl.name if framework == "fastendpoints" else "lambda",
                    owner=decl.name,
                    line=line_of(text, offset + match.start()),
                    framework=framework,
                )
            )
        return routes

    def _minimal_api_routes(self, text: str) -> List[RouteFact]:
        groups: Dict[str, str] = {}
        for match in _MAP_GROUP.finditer(text):
            parent = groups.get(match.group("parent"), "")
            groups[match.group("var")] = "/".join(
                part.strip("/") for part in (parent, match.group("path")) if part.strip("/")
            )
        routes: List[RouteFact] = []
        for match in _MINIMAL_API.finditer(text):
            handler_match = _HANDLER_REFERENCE.match(text, match.end())
            handler = handler_match.group("name") if handler_match else "lambda"
            if handler in ("async", "delegate"):
                handler = "lambda"
            routes.append(
                RouteFact(
                    method=match.group("verb").upper(),
                    path=match.group("path"),
                    handler=handler,
                    prefix=groups.get(match.group("target"), ""),
                    line=line_of(text, match.start()),
                    framework="aspnet",
                )
            )
        return routes


def _expand_tokens(path: str, controller: str, action: str) -> str:
    return path.replace("[controller]", controller).replace("[action]", action)


def _namespace_at(namespaces: Sequence[Tuple[int, str]], index: int) -> Optional[str]:
    current = None
    for position, name in namespaces:
        if position < index:
            current = name
    return current


def _base_name(text: str) -> str:
    return " ".join(text.split())


def _skip_spaces(text: str, index: int) -> int:
    while index < len(text) and text[index] in " \t\r\n":
        index += 1
    return index


def _statement_end(text: str, index: int) -> int:
    position = text.find(";", index)
    return position if position >= 0 else len(text)


def _declaration_index(text: str, decl: TypeDecl) -> int:
    match = re.search(rf"\b(?:class|record|struct)\s+{re.escape(decl.name)}\b", text)
    return match.end() if match else len(text)


_KEYWORDS = {
    "return", "new", "var", "await", "throw", "if", "else", "using", "yield", "case",
    "class", "struct", "record", "interface", "namespace", "get", "set", "init", "event",
    "delegate", "operator", "implicit", "explicit", "const", "static", "abstract",
}


def _is_keyword(word: str) -> bool:
    return word.strip().split(" ")[0] in _KEYWORDS


__all__ = ["CSharpBackend", "TYPES"]
