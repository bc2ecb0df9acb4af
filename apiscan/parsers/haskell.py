"""Haskell backend: algebraic data types and Servant API types."""

from __future__ import annotations

import re
from typing import Dict, List, NamedTuple, Optional, Set, Tuple

from ..models import Annotation, MethodDecl, Param, RouteFact, SourceUnit, TypeDecl
from ..paths import join_paths, operation_name
from .base import RegexBackend
from .text import find_matching, line_of, mask_comments, split_top_level
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): ["Text", "String", "ByteString", "LazyText", "LText", "T.Text", "Data.Text.Text"],
            ("integer", ""): ["Int", "Integer", "Int8", "Int16", "Word", "Word8", "Word16", "Natural"],
            ("integer", "int32"): ["Int32", "Word32"],
            ("integer", "int64"): ["Int64", "Word64"],
            ("number", "float"): ["Float"],
            ("number", "double"): ["Double"],
            ("number", ""): ["Scientific", "Rational"],
            ("boolean", ""): ["Bool"],
            ("string", "date-time"): ["UTCTime", "ZonedTime", "LocalTime"],
            ("string", "date"): ["Day"],
            ("string", "uuid"): ["UUID"],
            DEFAULT_MAPPING: ["Value", "Object"],
            VOID_MAPPING: ["()", "NoContent"],
        }
    ),
    nullable_prefixes=("Maybe ",),
    wrappers=("Handler ", "IO ", "AppM "),
    sequence_prefixes=("Vector ", "V.Vector ", "Set ", "NonEmpty "),
    map_prefixes=("Map ", "M.Map ", "Map.Map ", "HashMap ", "HM.HashMap ", "HashMap.HashMap "),
    strip_prefixes=("!",),
    bracket_literals=True,
)

_IMPORT = re.compile(r"^import\s+(?:qualified\s+)?([A-Z][\w.]*)", re.MULTILINE)
_DATA = re.compile(r"^(?P<kind>data|newtype)\s+(?P<name>[A-Z]\w*)(?:\s+[a-z]\w*)*\s*=", re.MULTILINE)
_ALIAS = re.compile(r"^type\s+(?P<name>[A-Z]\w*)(?:\s+[a-z]\w*)*\s*=", re.MULTILINE)
_SERVER_SIGNATURE = re.compile(r"^(?P<name>[a-z_]\w*)\s*::\s*Server\s+(?P<api>[A-Z]\w*)", re.MULTILINE)
_BINDING = re.compile(r"^(?P<name>[a-z_]\w*)\s*=", re.MULTILINE)
_CONSTRUCTOR = re.compile(r"^(?P<name>[A-Z]\w*)\s*(?P<rest>.*)$", re.DOTALL)

_VERB = re.compile(
    r"^(?P<verb>Get|Post|Put|Delete|Patch|Head|Options)"
    r"(?:Created|Accepted|NoContent|NonAuthoritative|PartialContent|ResetContent)?"
    r"(?:\s*'\[[^\]]*\]\s*(?P<out>.+))?$",
    re.DOTALL,
)
_GENERIC_VERB = re.compile(r"^U?Verb\s+'(?P<verb>[A-Z]+)\s+\d+\s*'\[[^\]]*\]\s*(?P<out>.+)$", re.DOTALL)
_CAPTURE = re.compile(r"^Capture(?P<all>All)?'?\s*(?:'\[[^\]]*\]\s*)?\"(?P<name>[^\"]+)\"\s+(?P<type>.+)$", re.DOTALL)
_QUERY = re.compile(
    r"^(?P<kind>QueryParams|QueryParam|QueryFlag)'?\s*(?:'\[(?P<mods>[^\]]*)\]\s*)?\"(?P<name>[^\"]+)\"\s*(?P<type>.*)$",
    re.DOTALL,
)
_BODY = re.compile(r"^ReqBody'?\s*(?:'\[[^\]]*\]\s*)?'\[[^\]]*\]\s*(?P<type>.+)$", re.DOTALL)

_MAX_DEPTH = 8


class _Endpoint(NamedTuple):
    method: str
    segments: Tuple[str, ...]
    params: Tuple[Param, ...]
    output: str


class HaskellBackend(RegexBackend):
    """Extracts records and Servant endpoints from Haskell modules."""

    language = "haskell"
    extensions = (".hs", ".lhs")
    types = TYPES

    def scan(self, text: str, unit: SourceUnit) -> None:
        plain = mask_comments(text, line_markers=("--",), block=("{-", "-}"), quotes="\"")
        unit.imports.extend(_IMPORT.findall(plain))
        for match in _DATA.finditer(plain):
            decl = self._data_decl(plain, match)
            if decl is not None:
                unit.types.append(decl)
        aliases: Dict[str, Tuple[str, int]] = {}
        for match in _ALIAS.finditer(plain):
            end = _layout_end(plain, match.end())
            aliases[match.group("name")] = (" ".join(plain[match.end() : end].split()), line_of(plain, match.start()))
        referenced = {
            name
            for name in aliases
            for other, (definition, _) in aliases.items()
            if other != name and re.search(rf"\b{name}\b", definition)
        }
        for name, (definition, line) in aliases.items():
            if name in referenced or not _is_api(definition):
                continue
            endpoints = _expand(definition, aliases, (), (), {name}, 0)
            handlers = _server_handlers(plain, name)
            if len(handlers) != len(endpoints):
                handlers = []
            for index, endpoint in enumerate(endpoints):
                path = join_paths(*endpoint.segments)
                handler = handlers[index] if handlers else operation_name(endpoint.method, path)
                unit.functions.append(
                    MethodDecl(name=handler, params=list(endpoint.params), return_type=endpoint.output, line=line)
                )
                unit.routes.append(
                    RouteFact(
                        method=endpoint.method,
                        path=path,
                        handler=handler,
                        owner=name,
                        line=line,
                        framework="servant",
                    )
                )

    def _data_decl(self, plain: str, match: re.Match[str]) -> Optional[TypeDecl]:
        end = _layout_end(plain, match.end())
        definition = re.split(r"\bderiving\b", plain[match.end() : end])[0]
        decl = TypeDecl(name=match.group("name"), line=line_of(plain, match.start()), kind=match.group("kind"))
        constructors = []
        for alternative in split_top_level(definition, "|", quotes="\""):
            constructor = _CONSTRUCTOR.match(alternative.strip())
            if constructor:
                constructors.append((constructor.group("name"), constructor.group("rest").strip()))
        if len(constructors) > 1:
            decl.kind = "enum" if all(not rest for _, rest in constructors) else "union"
        chosen = next((item for item in constructors if item[0] == decl.name), None)
        if chosen is None and len(constructors) == 1:
            chosen = constructors[0]
        if chosen is None or not chosen[1].startswith("{"):
            return decl
        record = re.compile(rf"\b{chosen[0]}\s*\{{").search(plain, match.end(), end)
        if record is None:
            return decl
        open_index = record.end() - 1
        close = find_matching(plain, open_index, "{", "}", quotes="\"")
        if close < 0:
            return decl
        pending: List[str] = []
        cursor = open_index
        for segment in split_top_level(plain[open_index + 1 : close], quotes="\""):
            if "::" not in segment:
                pending.append(segment.strip())
                continue
            names_text, _, raw_type = segment.partition("::")
            for name in pending + [names_text.strip()]:
                if not re.match(r"^[a-z_]\w*'?$", name):
                    continue
                offset = plain.find(name, cursor, close)
                if offset >= 0:
                    cursor = offset
                decl.fields.append(self.make_field(name, " ".join(raw_type.split()), line_of(plain, cursor)))
            pending = []
        return decl


def _layout_end(plain: str, start: int) -> int:
    """Return where a top-level declaration ends: the next unindented line."""
    index = plain.find("\n", start)
    while index >= 0:
        following = index + 1
        if following >= len(plain):
            return len(plain)
        char = plain[following]
        if char not in " \t\n\r":
            return index
        index = plain.find("\n", following)
    return len(plain)


def _is_api(definition: str) -> bool:
    return ":>" in definition or ":<|>" in definition or bool(_VERB.match(definition.strip()))


def _expand(
    definition: str,
    aliases: Dict[str, Tuple[str, int]],
    segments: Tuple[str, ...],
    params: Tuple[Param, ...],
    seen: Set[str],
    depth: int,
) -> List[_Endpoint]:
    """Flatten a Servant API type into endpoints, following aliases and groups."""
    if depth > _MAX_DEPTH:
        return []
    endpoints: List[_Endpoint] = []
    for alternative in split_top_level(definition, ":<|>", quotes="\""):
        endpoints.extend(_expand_alternative(alternative, aliases, segments, params, seen, depth))
    return endpoints


def _expand_alternative(
    alternative: str,
    aliases: Dict[str, Tuple[str, int]],
    segments: Tuple[str, ...],
    params: Tuple[Param, ...],
    seen: Set[str],
    depth: int,
) -> List[_Endpoint]:
    current_segments = list(segments)
    current_params = list(params)
    for part in split_top_level(alternative, ":>", quotes="\""):
        part = _strip_parens(part.strip())
        if part.startswith("\""):
            current_segments.extend(item for item in part.strip("\"").split("/") if item)
            continue
        capture = _CAPTURE.match(part)
        if capture:
            current_segments.append("{%s}" % capture.group("name"))
            current_params.append(Param(name=capture.group("name"), type=capture.group("type").strip()))
            continue
        query = _QUERY.match(part)
        if query:
            current_params.append(_query_param(query))
            continue
        body = _BODY.match(part)
        if body:
            current_params.append(
                Param(name="body", type=body.group("type").strip(), annotations=[Annotation(name="ReqBody")])
            )
            continue
        verb = _VERB.match(part) or _GENERIC_VERB.match(part)
        if verb:
            output = (verb.group("out") or "NoContent").strip()
            return [_Endpoint(verb.group("verb").upper(), tuple(current_segments), tuple(current_params), output)]
        if ":<|>" in part or ":>" in part:
            return _expand(part, aliases, tuple(current_segments), tuple(current_params), seen, depth + 1)
        if part in aliases and part not in seen:
            return _expand(
                aliases[part][0], aliases, tuple(current_segments), tuple(current_params), seen | {part}, depth + 1
            )
    return []


def _strip_parens(part: str) -> str:
    while part.startswith("(") and find_matching(part, 0, "(", ")", quotes="\"") == len(part) - 1:
        part = part[1:-1].strip()
    return part


def _query_param(match: re.Match[str]) -> Param:
    kind = match.group("kind")
    raw_type = match.group("type").strip()
    if kind == "QueryFlag":
        raw_type = "Bool"
    elif kind == "QueryParams":
        raw_type = f"[{raw_type}]"
    mods = match.group("mods") or ""
    return Param(
        name=match.group("name"),
        type=raw_type,
        required="Required" in mods,
        annotations=[Annotation(name="QueryParam")],
    )


def _server_handlers(plain: str, api: str) -> List[str]:
    """Read handler names, in order, from the ``Server api`` binding."""
    bindings: Dict[str, str] = {}
    for match in _BINDING.finditer(plain):
        end = _layout_end(plain, match.end())
        bindings.setdefault(match.group("name"), " ".join(plain[match.end() : end].split()))
    for signature in _SERVER_SIGNATURE.finditer(plain):
        if signature.group("api") == api and signature.group("name") in bindings:
            return _flatten_server(bindings[signature.group("name")], bindings, 0)
    return []


def _flatten_server(expression: str, bindings: Dict[str, str], depth: int) -> List[str]:
    names: List[str] = []
    for alternative in split_top_level(re.split(r"\bwhere\b", expression)[0], ":<|>", quotes="\""):
        alternative = _strip_parens(alternative.strip())
        if ":<|>" in alternative:
            names.extend(_flatten_server(alternative, bindings, depth + 1))
            continue
        word = re.match(r"^[a-z_]\w*'?", alternative)
        if not word:
            return []
        name = word.group(0)
        if depth < _MAX_DEPTH and ":<|>" in bindings.get(name, ""):
            names.extend(_flatten_server(bindings[name], bindings, depth + 1))
        else:
            names.append(name)
    return names


__all__ = ["HaskellBackend", "TYPES"]
