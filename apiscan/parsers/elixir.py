"""Elixir backend: modules and functions, Ecto schemas, Phoenix and Plug routers."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

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
    unquote,
)
from ..paths import join_paths
from .base import RegexBackend
from .text import (
    find_keyword_block,
    line_of,
    list_literal,
    mask_comments,
    parse_arguments,
    split_top_level,
    statement_end,
)
from .typemap import DEFAULT_MAPPING, VOID_MAPPING, FieldShape, TypeMapping, TypeTable, format_table

TYPES = TypeTable(
    format_table(
        {
            ("string", ""): ["string", "String.t()", "String.t", "binary()", "atom", "atom()"],
            ("integer", ""): ["integer", "integer()", "non_neg_integer()", "pos_integer()"],
            ("integer", "int64"): ["id"],
            ("number", ""): ["float", "float()", "number()", "decimal", "Decimal.t()"],
            ("boolean", ""): ["boolean", "boolean()"],
            ("string", "date-time"): [
                "naive_datetime", "naive_datetime_usec", "utc_datetime", "utc_datetime_usec",
                "DateTime.t()", "NaiveDateTime.t()",
            ],
            ("string", "date"): ["date", "Date.t()"],
            ("string", "time"): ["time", "time_usec", "Time.t()"],
            ("string", "uuid"): ["binary_id", "uuid", "Ecto.UUID", "Ecto.UUID.t()"],
            ("string", "binary"): ["binary"],
            DEFAULT_MAPPING: ["map", "map()", "any", "any()", "term()"],
            VOID_MAPPING: ["nil", "no_return()"],
        }
    ),
    union_nulls=("nil",),
    sequence_prefixes=("list(",),
    map_prefixes=("%{",),
    strip_prefixes=(":",),
    bracket_literals=True,
)

_OPENERS = ("do", "fn")

_MODULE = re.compile(r"^[ \t]*defmodule\s+(?P<name>[A-Z][\w.]*)\s+do\b", re.MULTILINE)
_USE = re.compile(r"^[ \t]*(?:use|alias|import)\s+([A-Z][\w.]*)", re.MULTILINE)
_DEF = re.compile(
    r"^[ \t]*(?P<kind>defp?|defmacrop?)\s+(?P<name>[a-z_]\w*[?!]?)\s*(?:\((?P<params>[^)]*)\))?",
    re.MULTILINE,
)
_SCHEMA = re.compile(r"^[ \t]*(?:(?P<embedded>embedded_schema)|schema\s+\"(?P<table>[^\"]+)\")\s+do\b", re.MULTILINE)
_FIELD = re.compile(
    r"^[ \t]*(?P<macro>field|belongs_to|embeds_one|embeds_many|has_one|has_many)\s*\(?\s*:(?P<name>\w+)"
    r"(?:[ \t]*,[ \t]*(?P<rest>[^\n]+))?",
    re.MULTILINE,
)
_TIMESTAMPS = re.compile(r"^[ \t]*timestamps\s*\(([^)]*)\)", re.MULTILINE)
_REQUIRED = re.compile(r"validate_required\s*\(\s*(?:\w+\s*,\s*)?(\[[^\]]*\]|~w\([^)]*\)a?)")
_STATEMENT = re.compile(
    r"^[ \t]*(?P<kw>scope|resources|get|post|put|patch|delete|options|head|live|match)\b(?![?!:])"
    r"[ \t]*(?P<paren>\()?(?P<args>[^\n]*)",
    re.MULTILINE,
)
_BLOCK_OPEN = re.compile(r"(?:^|[\s,])do\s*$")


@dataclass(frozen=True)
class _Scope:
    prefix: str = ""
    alias: str = ""


class ElixirBackend(RegexBackend):
    """Extracts modules, Ecto schemas and Phoenix/Plug routes from Elixir files."""

    language = "elixir"
    extensions = (".ex", ".exs")
    types = TYPES

    def map_type(self, raw: str) -> TypeMapping:
        shape = _container(raw)
        if shape is not None:
            return ("array", "") if shape.kind is TypeKind.SEQUENCE else ("object", "")
        return super().map_type(raw)

    def classify(self, raw: str) -> FieldShape:
        shape = _container(raw)
        return shape if shape is not None else super().classify(raw)

    def scan(self, text: str, unit: SourceUnit) -> None:
        plain = mask_comments(text, line_markers=("#",), block=None, quotes="\"")
        unit.imports.extend(_USE.findall(plain))
        self._scan_modules(plain, 0, len(plain), unit)
        self._walk(plain, 0, len(plain), _Scope(), unit)

    # ------------------------------------------------------------------
    # Modules, functions and schemas
    # ------------------------------------------------------------------

    def _scan_modules(self, plain: str, start: int, end: int, unit: SourceUnit) -> None:
        nested: List[Tuple[int, int]] = []
        for match in _MODULE.finditer(plain, start, end):
            if any(low <= match.start() < high for low, high in nested):
                continue
            body, body_start = find_keyword_block(plain, match.end(), _OPENERS)
            body_end = body_start + len(body) if body else end
            nested.append((match.start(), body_end))
            namespace, _, name = match.group("name").rpartition(".")
            decl = TypeDecl(
                name=name,
                namespace=namespace or None,
                line=line_of(plain, match.start()),
                kind="module",
            )
            inner: List[Tuple[int, int]] = []
            for child in _MODULE.finditer(plain, body_start, body_end):
                if any(low <= child.start() < high for low, high in inner):
                    continue
                child_body, child_start = find_keyword_block(plain, child.end(), _OPENERS)
                inner.append((child.start(), child_start + len(child_body) if child_body else body_end))
            self._scan_functions(plain, body_start, body_end, inner, decl)
            self._scan_schema(plain, body_start, body_end, inner, decl)
            unit.types.append(decl)
            self._scan_modules(plain, body_start, body_end, unit)

    def _scan_functions(
        self, plain: str, start: int, end: int, excluded: List[Tuple[int, int]], decl: TypeDecl
    ) -> None:
        seen = set()
        for match in _DEF.finditer(plain, start, end):
            if any(low <= match.start() < high for low, high in excluded):
                continue
            name = match.group("name")
            params = _parse_params(match.group("params") or "")
            key = (name, len(params))
            if key in seen:
                continue
            seen.add(key)
            decl.methods.append(
                MethodDecl(
                    name=name,
                    params=params,
                    visibility="private" if match.group("kind").endswith("p") else "public",
                    line=line_of(plain, match.start()),
                    owner=decl.name,
                )
            )

    def _scan_schema(
        self, plain: str, start: int, end: int, excluded: List[Tuple[int, int]], decl: TypeDecl
    ) -> None:
        match = next(
            (
                item
                for item in _SCHEMA.finditer(plain, start, end)
                if not any(low <= item.start() < high for low, high in excluded)
            ),
            None,
        )
        if match is None:
            return
        decl.kind = "embedded_schema" if match.group("embedded") else "schema"
        if match.group("table"):
            decl.annotations.append(
                Annotation(name="schema", args=[f'"{match.group("table")}"'], line=line_of(plain, match.start()))
            )
        body, body_start = find_keyword_block(plain, match.end(), _OPENERS)
        body_end = body_start + len(body)
        required = _required_fields(plain[start:end])
        for field_match in _FIELD.finditer(plain, body_start, body_end):
            field = self._field(field_match, line_of(plain, field_match.start()))
            if field is not None:
                decl.fields.append(field)
        for stamp in _TIMESTAMPS.finditer(plain, body_start, body_end):
            _, options = parse_arguments(stamp.group(1), (":",))
            raw_type = options.get("type", ":naive_datetime")
            for name in ("inserted_at", "updated_at"):
                decl.fields.append(self.make_field(name, raw_type, line_of(plain, stamp.start())))
        if required is not None:
            for field in decl.fields:
                field.optional = field.optional or field.name not in required

    def _field(self, match: re.Match[str], line: int) -> Optional[FieldDecl]:
        macro = match.group("macro")
        name = match.group("name")
        args, options = parse_arguments(match.group("rest") or "", (":",))
        raw_type = args[0].rstrip(")").strip() if args else ":string"
        if macro == "belongs_to":
            return self.make_field(
                unquote(options.get("foreign_key", f":{name}_id")), options.get("type", ":id"), line
            )
        if macro in ("has_one", "has_many"):
            return None
        if macro == "embeds_many":
            raw_type = "{:array, %s}" % raw_type
        default = options.get("default")
        return self.make_field(
            name,
            raw_type,
            line,
            default=default,
            optional=default is not None,
            alias=unquote(options["source"]) if "source" in options else None,
        )

    # ------------------------------------------------------------------
    # Router DSL
    # ------------------------------------------------------------------

    def _walk(self, plain: str, start: int, end: int, scope: _Scope, unit: SourceUnit) -> None:
        cursor = start
        for match in _STATEMENT.finditer(plain, start, end):
            if match.start() < cursor:
                continue
            keyword = match.group("kw")
            args_end = min(statement_end(plain, match.start("args")), end)
            args_text = plain[match.start("args") : args_end]
            block = _BLOCK_OPEN.search(args_text)
            body = ""
            body_start = args_end
            if block is not None:
                body_start = match.start("args") + block.end()
                body, _ = find_keyword_block(plain, body_start, _OPENERS)
                cursor = body_start + len(body) + len("end")
                args_text = args_text[: block.start()].rstrip().rstrip(",")
            if match.group("paren") and args_text.rstrip().endswith(")"):
                args_text = args_text.rstrip()[:-1]
            args, options = parse_arguments(args_text, (":",))
            line = line_of(plain, match.start())
            if keyword == "scope":
                inner = _scope(args, options, scope)
                if body:
                    self._walk(plain, body_start, body_start + len(body), inner, unit)
            elif keyword == "resources":
                resource = _resource(args, options, scope, line)
                if resource is None:
                    continue
                unit.resources.append(resource)
                if body:
                    nested = join_paths(scope.prefix, resource.path)
                    if not resource.singular:
                        nested = join_paths(nested, "{%s_id}" % _param_name(resource.path))
                    self._walk(plain, body_start, body_start + len(body), replace(scope, prefix=nested), unit)
            else:
                unit.routes.extend(_verb_routes(keyword, args, options, block is not None, scope, line))


def _container(raw: str) -> Optional[FieldShape]:
    """Classify Ecto ``{:array, t}`` / ``{:map, t}`` composite types."""
    text = raw.strip()
    match = re.match(r"^\{\s*:(array|map)\s*,\s*(.+)\}$", text, re.DOTALL)
    if not match:
        return None
    inner = match.group(2).strip()
    if match.group(1) == "array":
        return FieldShape(TypeKind.SEQUENCE, element_type=inner)
    return FieldShape(TypeKind.MAP, key_type=":string", element_type=inner)


def _required_fields(module_text: str) -> Optional[List[str]]:
    names: List[str] = []
    found = False
    for match in _REQUIRED.finditer(module_text):
        found = True
        literal = match.group(1)
        if literal.startswith("~w("):
            names.extend(literal[3:].rstrip("a").rstrip(")").split())
        else:
            names.extend(list_literal(literal))
    return names if found else None


def _parse_params(text: str) -> List[Param]:
    params: List[Param] = []
    for segment in split_top_level(text):
        name, _, default = segment.partition("\\\\")
        name = name.strip()
        if "=" in name:
            name = name.rpartition("=")[2].strip()
        if not re.match(r"^_?[a-z]\w*$", name):
            continue
        default_text = default.strip() or None
        params.append(Param(name=name, required=default_text is None, default=default_text))
    return params


def _scope(args: List[str], options: Dict[str, str], scope: _Scope) -> _Scope:
    path = unquote(args[0]) if args and args[0].startswith('"') else unquote(options.get("path", '""'))
    alias_args = [arg for arg in args if re.match(r"^[A-Z][\w.]*$", arg)]
    alias = alias_args[0] if alias_args else options.get("alias", "")
    if alias and re.match(r"^[A-Z][\w.]*$", alias):
        alias = f"{scope.alias}.{alias}" if scope.alias else alias
    else:
        alias = scope.alias
    return _Scope(prefix=join_paths(scope.prefix, path), alias=alias)


def _controller(name: str, scope: _Scope) -> str:
    return f"{scope.alias}.{name}" if scope.alias else name


def _resource(args: List[str], options: Dict[str, str], scope: _Scope, line: int) -> Optional[ResourceFact]:
    if len(args) < 2 or not args[0].startswith('"'):
        return None
    singular = options.get("singleton", "").strip() == "true"
    return ResourceFact(
        path=unquote(args[0]),
        controller=_controller(args[1], scope),
        only=list_literal(options["only"]) if "only" in options else [],
        except_=list_literal(options["except"]) if "except" in options else [],
        line=line,
        framework="phoenix",
        prefix=scope.prefix,
        singular=singular,
    )


def _verb_routes(
    keyword: str, args: List[str], options: Dict[str, str], has_block: bool, scope: _Scope, line: int
) -> List[RouteFact]:
    if keyword == "match":
        if len(args) < 2 or not args[0].startswith(":"):
            return []
        verb = args[0].lstrip(":").upper()
        verbs = ["GET", "POST", "PUT", "PATCH", "DELETE"] if verb == "*" else [verb]
        args = args[1:]
    else:
        verbs = ["GET"] if keyword == "live" else [keyword.upper()]
    if not args or not args[0].startswith('"'):
        return []
    path = unquote(args[0])
    if len(args) >= 3:
        controller, action = _controller(args[1], scope), unquote(args[2])
        framework = "phoenix"
    elif keyword == "live" and len(args) == 2:
        controller, action = _controller(args[1], scope), "mount"
        framework = "phoenix"
    elif has_block or "to" in options:
        controller = _controller(options["to"], scope) if "to" in options else None
        action = "call" if controller else "lambda"
        framework = "plug"
    else:
        return []
    return [
        RouteFact(
            method=verb,
            path=path,
            handler=action,
            owner=controller,
            prefix=scope.prefix,
            line=line,
            framework=framework,
        )
        for verb in verbs
    ]


def _param_name(path: str) -> str:
    word = path.strip("/").rpartition("/")[2]
    if word.endswith("ies"):
        word = word[:-3] + "y"
    elif word.endswith("s") and not word.endswith("ss"):
        word = word[:-1]
    return word


__all__ = ["ElixirBackend", "TYPES"]
