"""Scala backend: case classes, Play controllers and routes files, Tapir endpoints."""

from __future__ import annotations

import posixpath
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
    mask_comments,
    scan_at_annotations,
    split_top_level,
)
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): ["String", "Char"],
            ("integer", "int32"): ["Int", "Short", "Byte"],
            ("integer", "int64"): ["Long", "BigInt"],
            ("number", "float"): ["Float"],
            ("number", "double"): ["Double", "BigDecimal"],
            ("boolean", ""): ["Boolean"],
            ("string", "date-time"): ["LocalDateTime", "Instant", "ZonedDateTime", "OffsetDateTime", "DateTime"],
            ("string", "date"): ["LocalDate"],
            ("string", "uuid"): ["UUID"],
            ("string", "binary"): ["Array[Byte]"],
            DEFAULT_MAPPING: ["Any", "AnyRef", "Json", "JsValue", "JsObject"],
            VOID_MAPPING: ["Unit", "Nothing"],
        }
    ),
    optional_wrappers=("Option[",),
    wrappers=("Future[", "IO[", "Task[", "Action[", "UIO["),
    sequence_prefixes=("List[", "Seq[", "Vector[", "Set[", "Array[", "IndexedSeq[", "Iterable[", "NonEmptyList["),
    map_prefixes=("Map[",),
)

PLAY_ROUTES_NAMES = ("routes",)

_PACKAGE = re.compile(r"^\s*package\s+([\w.]+)", re.MULTILINE)
_IMPORT = re.compile(r"^\s*import\s+([\w.{}, _*]+)", re.MULTILINE)
_TYPE = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:final|sealed|abstract|private|protected|implicit|case)\s+)*)"
    r"(?P<kind>class|object|trait)\s+(?P<name>[A-Za-z_]\w*)(?P<generics>\s*\[[^\]]*\])?"
)
_DEF = re.compile(
    r"(?:(?<=[\s;{}])|^)(?P<mods>(?:(?:override|private|protected|final|implicit)\s+)*)def\s+"
    r"(?P<name>[A-Za-z_]\w*)(?:\s*\[[^\]]*\])?"
)
_CONSTRUCTOR_PREFIX = re.compile(r"[ \t]*(?:(?:private|protected)\s+)?(?:@\w+(?:\(\s*\))?\s*)*")
_PARAM = re.compile(
    r"^(?:(?:implicit|override|private|protected)\s+)*(?:(?:val|var)\s+)?(?P<name>[A-Za-z_]\w*)\s*:\s*"
    r"(?P<type>.+?)\s*(?:=\s*(?P<default>.+))?$",
    re.DOTALL,
)
_RETURN = re.compile(r"\s*:\s*(?P<ret>[^=\n{]+?)\s*=")
_ACTION = re.compile(r"\s*=\s*(?P<action>Action(?:\.async)?)\b")
_PLAY_ROUTE = re.compile(
    r"^(?P<verb>GET|POST|PUT|DELETE|PATCH|HEAD|OPTIONS)\s+(?P<path>/\S*)\s+(?P<target>[^\s(]+)(?:\((?P<params>[^)]*)\))?"
)
_PLAY_MOUNT = re.compile(r"^->\s+(?P<path>/\S*)\s+(?P<router>\S+)")
_TAPIR_ENDPOINT = re.compile(r"\bendpoint\s*\.\s*(?P<verb>get|post|put|delete|patch|head|options)\b")
_TAPIR_VAL = re.compile(r"(?:val|def|lazy\s+val)\s+(?P<name>\w+)(?:\s*:\s*[^=]+)?\s*=\s*$")
_TAPIR_PATH_PARAM = re.compile(r"^path\s*\[")
_TAPIR_QUERY = re.compile(r"^query\s*\[")
_TAPIR_NAME = re.compile(r"\s*\(\s*\"(?P<name>[^\"]+)\"")
_JSON_BODY = re.compile(r"jsonBody\s*\[")
_CHAIN_NAME = re.compile(r"\.\s*(\w+)")

_NAME_ANNOTATIONS = ("JsonKey", "JsonProperty", "key")
MOUNT = "MOUNT"


def is_play_routes(path: str) -> bool:
    name = posixpath.basename(path.replace("\\", "/"))
    return name in PLAY_ROUTES_NAMES or name.endswith(".routes")


class ScalaBackend(RegexBackend):
    """Extracts case classes, Play controllers, Play routes files and Tapir endpoints."""

    language = "scala"
    extensions = (".scala", ".sc")
    types = TYPES

    def scan(self, text: str, unit: SourceUnit) -> None:
        if is_play_routes(unit.path):
            unit.routes.extend(self._play_routes(text))
            return
        text = mask_comments(text)
        unit.imports.extend(item.strip() for item in _IMPORT.findall(text))
        package_match = _PACKAGE.search(text)
        package = package_match.group(1) if package_match else None
        spans = scan_at_annotations(text)
        plain = blank_spans(text, spans)
        extents = self._scan_types(text, plain, 0, len(plain), package, spans, unit)
        for function, offset in self._scan_defs(text, plain, 0, len(plain), None, spans):
            if not any(low <= offset < high for low, high in extents):
                unit.functions.append(function)
        endpoints, routes = self._tapir_endpoints(plain)
        unit.functions.extend(endpoints)
        unit.routes.extend(routes)

    # ------------------------------------------------------------------
    # Types and defs
    # ------------------------------------------------------------------

    def _scan_types(
        self,
        text: str,
        plain: str,
        start: int,
        end: int,
        package: Optional[str],
        spans: Sequence[AttributeSpan],
        unit: SourceUnit,
    ) -> List[Tuple[int, int]]:
        extents: List[Tuple[int, int]] = []
        cursor = start
        for match in _TYPE.finditer(plain, start, end):
            if match.start() < cursor:
                continue
            decl, body_start, body_end = self._type_decl(text, plain, match, package, spans)
            unit.types.append(decl)
            if body_start > 0:
                nested = self._scan_types(text, plain, body_start, body_end, package, spans, unit)
                for method, offset in self._scan_defs(text, plain, body_start, body_end, decl.name, spans):
                    if not any(low <= offset < high for low, high in nested):
                        decl.methods.append(method)
                extents.append((match.start(), body_end))
                cursor = body_end
        return extents

    def _type_decl(
        self,
        text: str,
        plain: str,
        match: re.Match[str],
        package: Optional[str],
        spans: Sequence[AttributeSpan],
    ) -> Tuple[TypeDecl, int, int]:
        mods = match.group("mods").split()
        header_end = match.end()
        params_text = ""
        paren = _CONSTRUCTOR_PREFIX.match(plain, header_end).end()
        if paren < len(plain) and plain[paren] == "(":
            close = find_matching(plain, paren, "(", ")")
            if close > 0:
                params_text = text[paren + 1 : close]
                header_end = close + 1
        body, body_start = find_brace_body(plain, header_end, stop="\n")
        header = plain[header_end : body_start - 1] if body_start > 0 else ""
        decl = TypeDecl(
            name=match.group("name"),
            namespace=package,
            bases=_bases(header),
            annotations=attached_annotations(text, spans, match.start()),
            line=line_of(text, match.start()),
            kind="case class" if "case" in mods else match.group("kind"),
        )
        if params_text and ("case" in mods or "val " in params_text):
            decl.fields.extend(self._constructor_fields(params_text, decl.line, "case" in mods))
        body_end = body_start + len(body) if body_start > 0 else header_end
        return decl, body_start, body_end

    def _constructor_fields(self, params_text: str, line: int, case_class: bool) -> List[FieldDecl]:
        fields: List[FieldDecl] = []
        for segment in split_top_level(params_text):
            spans = scan_at_annotations(segment)
            body = segment[spans[-1].end :].strip() if spans else segment
            if not case_class and not re.match(r"^(?:\w+\s+)*va[lr]\s", body):
                continue
            match = _PARAM.match(body)
            if not match:
                continue
            annotations = [item for span in spans for item in span.annotations]
            fields.append(self._field(match.group("name"), match.group("type"), line, match.group("default"), annotations))
        return fields

    def _field(
        self, name: str, raw_type: str, line: int, default: Optional[str], annotations: List[Annotation]
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

    def _scan_defs(
        self,
        text: str,
        plain: str,
        start: int,
        end: int,
        owner: Optional[str],
        spans: Sequence[AttributeSpan],
    ) -> List[Tuple[MethodDecl, int]]:
        found: List[Tuple[MethodDecl, int]] = []
        cursor = start
        for match in _DEF.finditer(plain, start, end):
            if match.start() < cursor:
                continue
            position = match.end()
            params: List[Param] = []
            while True:
                paren = _skip_blank(plain, position)
                if paren >= end or plain[paren] != "(":
                    break
                close = find_matching(plain, paren, "(", ")")
                if close < 0:
                    break
                if not params:
                    params = self._parse_params(text[paren + 1 : close])
                position = close + 1
            ret = ""
            ret_match = _RETURN.match(plain, position)
            if ret_match:
                ret = ret_match.group("ret").strip()
            else:
                action_match = _ACTION.match(plain, position)
                if action_match:
                    ret = action_match.group("action")
            body, body_start = find_brace_body(plain, position, stop="\n")
            cursor = body_start + len(body) if body_start > 0 else position
            mods = match.group("mods").split()
            decl = MethodDecl(
                name=match.group("name"),
                params=params,
                return_type=ret,
                is_async=ret.startswith(("Future[", "IO[", "Action.async")),
                visibility=next((mod for mod in mods if mod in ("private", "protected")), "public"),
                annotations=attached_annotations(text, spans, match.start()),
                line=line_of(text, match.start()),
                owner=owner,
            )
            found.append((decl, match.start()))
        return found

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
            params.append(
                Param(
                    name=match.group("name"),
                    type=type_text,
                    required=default is None and not type_text.startswith("Option["),
                    default=default.strip() if default else None,
                    annotations=[item for span in spans for item in span.annotations],
                )
            )
        return params

    # ------------------------------------------------------------------
    # Play routes files
    # ------------------------------------------------------------------

    def _play_routes(self, text: str) -> List[RouteFact]:
        routes: List[RouteFact] = []
        for number, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            mount = _PLAY_MOUNT.match(line)
            if mount:
                routes.append(
                    RouteFact(
                        method=MOUNT,
                        path=mount.group("path"),
                        handler=mount.group("router"),
                        line=number,
                        framework="play",
                    )
                )
                continue
            match = _PLAY_ROUTE.match(line)
            if not match:
                continue
            target = match.group("target")
            owner, _, action = target.rpartition(".")
            routes.append(
                RouteFact(
                    method=match.group("verb"),
                    path=match.group("path"),
                    handler=action,
                    owner=owner.rpartition(".")[2] or None,
                    line=number,
                    framework="play",
                )
            )
        return routes

    # ------------------------------------------------------------------
    # Tapir
    # ------------------------------------------------------------------

    def _tapir_endpoints(self, plain: str) -> Tuple[List[MethodDecl], List[RouteFact]]:
        """Turn ``endpoint.get.in("users" / path[Long]("id")).out(jsonBody[User])`` into facts.

        Each endpoint value becomes a synthetic function carrying its body
        parameter and output type, so handlers resolve in the same file.
        """
        functions: List[MethodDecl] = []
        routes: List[RouteFact] = []
        for match in _TAPIR_ENDPOINT.finditer(plain):
            line_start = plain.rfind("\n", 0, match.start()) + 1
            owner_match = _TAPIR_VAL.search(plain[max(0, line_start - 200) : match.start()].rstrip() + " ")
            name = owner_match.group("name") if owner_match else "lambda"
            segments: List[str] = []
            params: List[Param] = []
            output = ""
            for call, args in _chain_calls(plain, match.end()):
                if call == "in":
                    for part in split_top_level(args, "/"):
                        part = part.strip()
                        path_param = _named_type_argument(part, _TAPIR_PATH_PARAM)
                        query = _named_type_argument(part, _TAPIR_QUERY)
                        body = _json_body(part)
                        if path_param:
                            segments.append("{%s}" % path_param[1])
                        elif query:
                            params.append(
                                Param(
                                    name=query[1],
                                    type=query[0],
                                    required=not query[0].startswith("Option["),
                                    annotations=[Annotation(name="Query")],
                                )
                            )
                        elif body:
                            params.append(Param(name="body", type=body, annotations=[Annotation(name="Body")]))
                        elif part.startswith("\""):
                            segments.extend(item for item in unquote(part).split("/") if item)
                elif call == "out":
                    output = _json_body(args) or output
            line = line_of(plain, match.start())
            if name != "lambda":
                functions.append(MethodDecl(name=name, params=params, return_type=output, line=line))
            routes.append(
                RouteFact(
                    method=match.group("verb").upper(),
                    path="/" + "/".join(segments),
                    handler=name,
                    line=line,
                    framework="tapir",
                )
            )
        return functions, routes


def _type_argument(text: str, match: re.Match[str]) -> Tuple[str, int]:
    """Return the outermost ``[...]`` argument opened by ``match`` and the index after it."""
    open_index = match.end() - 1
    close = find_matching(text, open_index, "[", "]")
    if close < 0:
        return "", -1
    return " ".join(text[open_index + 1 : close].split()), close + 1


def _named_type_argument(text: str, pattern: re.Pattern[str]) -> Optional[Tuple[str, str]]:
    """``path[Long]("id")`` gives ``("Long", "id")``."""
    match = pattern.match(text)
    if not match:
        return None
    type_, end = _type_argument(text, match)
    name = _TAPIR_NAME.match(text, end) if end >= 0 else None
    return (type_, name.group("name")) if name and type_ else None


def _json_body(text: str) -> str:
    match = _JSON_BODY.search(text)
    return _type_argument(text, match)[0] if match else ""


def _chain_calls(text: str, position: int) -> List[Tuple[str, str]]:
    """Follow a ``.name(args)`` method chain starting at ``position``."""
    calls: List[Tuple[str, str]] = []
    while True:
        dot = _skip_blank(text, position, newlines=True)
        if dot >= len(text) or text[dot] != ".":
            return calls
        name_match = _CHAIN_NAME.match(text, dot)
        if not name_match:
            return calls
        position = name_match.end()
        args = ""
        paren = _skip_blank(text, position)
        if paren < len(text) and text[paren] == "[":
            close = find_matching(text, paren, "[", "]")
            if close < 0:
                return calls
            paren = _skip_blank(text, close + 1)
            position = close + 1
        if paren < len(text) and text[paren] == "(":
            close = find_matching(text, paren, "(", ")")
            if close < 0:
                return calls
            args = text[paren + 1 : close]
            position = close + 1
        calls.append((name_match.group(1), args))


def _skip_blank(text: str, index: int, newlines: bool = False) -> int:
    blanks = " \t\r\n" if newlines else " \t"
    while index < len(text) and text[index] in blanks:
        index += 1
    return index


def _bases(header: str) -> List[str]:
    match = re.search(r"\bextends\s+(.+)", header, re.DOTALL)
    if not match:
        return []
    bases = []
    for item in re.split(r"\bwith\b", match.group(1)):
        name = item.split("(")[0].strip()
        if name:
            bases.append(name)
    return bases


__all__ = ["MOUNT", "ScalaBackend", "TYPES", "is_play_routes"]
