"""Framework plugin base: turns backend facts into ``Route`` and ``Schema`` records."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..errors import ParseError
from ..logging import get_logger
from ..models import (
    MethodDecl,
    Param,
    Parameter,
    ResourceFact,
    Route,
    RouteFact,
    Schema,
    SourceFile,
    SourceUnit,
    TypeDecl,
    TypeKind,
    is_string_literal,
    unquote,
)
from ..parsers import get_backend
from ..parsers.base import Backend
from ..parsers.text import split_top_level
from ..parsers.typemap import VOID_MAPPING
from ..paths import expand_resource, extract_path_params, join_paths, normalize_path, operation_name

logger = get_logger("plugins")

SCHEMA_REF_PREFIX = "#/components/schemas/"
_VERSION_SEGMENTS = {"api", "v1", "v2", "v3"}
_DEPRECATED = {"Obsolete", "Deprecated", "deprecated"}
_PATH_MARKERS = ("PathVariable", "PathParam", "FromRoute", "Param", "Path")
_MAX_DEPTH = 6


def operation_id(method: str, path: str, handler: str) -> str:
    """``getUsers`` from a handler name, or ``getUsersById`` from the path."""
    if handler and handler != "lambda":
        name = re.sub(r"\W", "", handler)
        if name:
            return method.lower() + name[:1].upper() + name[1:]
    return operation_name(method, path)


def infer_tags(path: str) -> List[str]:
    """Tag a route with its first meaningful path segment."""
    for segment in path.split("/"):
        if not segment or segment.startswith("{") or segment.lower() in _VERSION_SEGMENTS:
            continue
        return [segment]
    return []


class FrameworkPlugin:
    """Converts one language's facts into normalized route and schema records.

    Subclasses set :attr:`language` and adjust the parameter classification
    hooks for their frameworks' conventions.
    """

    language: str = ""
    body_markers: Sequence[str] = ("Body", "FromBody", "RequestBody", "ReqBody", "Json")
    query_markers: Sequence[str] = ("Query", "FromQuery", "RequestParam", "QueryParam")
    handler_separator = "."

    def __init__(self, include_private: bool = False, backend: Optional[Backend] = None) -> None:
        self.include_private = include_private
        self._backend = backend

    @property
    def backend(self) -> Backend:
        if self._backend is None:
            self._backend = get_backend(self.language)
        return self._backend

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def parse(self, file: SourceFile) -> SourceUnit:
        return self.backend.parse(file.path, file.content)

    def extract_routes(self, files: Iterable[SourceFile]) -> List[Route]:
        files = list(files)
        prefixes = self.prepare(files)
        routes: List[Route] = []
        for unit in self._parse_all(files):
            with unit:
                routes.extend(self.build_routes(unit, self.prefix_for(unit, prefixes)))
        return routes

    def extract_schemas(self, files: Iterable[SourceFile]) -> List[Schema]:
        schemas: List[Schema] = []
        for unit in self._parse_all(files):
            with unit:
                schemas.extend(self.build_schemas(unit))
        return schemas

    def extract_unit(
        self, unit: SourceUnit, prefixes: Optional[Mapping[str, str]] = None
    ) -> Tuple[List[Route], List[Schema]]:
        return self.build_routes(unit, self.prefix_for(unit, prefixes or {})), self.build_schemas(unit)

    def prepare(self, files: Sequence[SourceFile]) -> Dict[str, str]:
        """Collect batch-wide route prefixes, keyed by file name, before files are extracted one by one.

        The plugin keeps no batch state; callers pass the result back to :meth:`prefix_for`.
        """
        return {}

    def prefix_for(self, unit: SourceUnit, prefixes: Mapping[str, str]) -> str:
        return ""

    def _parse_all(self, files: Iterable[SourceFile]) -> Iterable[SourceUnit]:
        for file in files:
            try:
                yield self.parse(file)
            except ParseError as exc:
                logger.warning("Skipping %s: %s", file.path, exc.reason)

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def route_facts(self, unit: SourceUnit) -> List[RouteFact]:
        facts = [fact for fact in unit.routes if fact.method != "MOUNT"]
        for resource in unit.resources:
            facts.extend(self.expand(resource))
        return facts

    def expand(self, resource: ResourceFact) -> List[RouteFact]:
        return expand_resource(resource)

    def build_routes(self, unit: SourceUnit, prefix: str = "") -> List[Route]:
        return [self.build_route(fact, unit, prefix) for fact in self.route_facts(unit)]

    def build_route(self, fact: RouteFact, unit: SourceUnit, prefix: str = "") -> Route:
        raw = join_paths(prefix, fact.prefix, fact.path) if (prefix or fact.prefix) else fact.path
        path = normalize_path(raw, fact.framework)
        method = fact.method.upper()
        path_params = extract_path_params(path)
        handler = None
        if fact.handler and fact.handler != "lambda":
            handler = unit.find_handler(fact.handler, fact.owner)
        route = Route(
            method=method,
            path=path,
            handler=self.qualified_handler(fact),
            operation_id=operation_id(method, path, fact.handler),
            tags=infer_tags(path),
            source_file=unit.path,
            source_line=fact.line,
        )
        route.parameters = [self.path_parameter(name, handler, unit) for name in path_params]
        if handler is None:
            return route
        for param in handler.params:
            if param.name in path_params or self.is_path_param(param):
                continue
            if self.is_body_param(param, fact, unit):
                if route.request_body is None:
                    route.request_body = self.schema_for_type(self.body_type(param), unit)
            elif self.is_query_param(param, fact, unit):
                route.parameters.append(self.query_parameter(param, unit))
        route.response = self.response_schema(handler, unit)
        route.deprecated = any(
            annotation.name.rpartition(".")[2] in _DEPRECATED for annotation in handler.annotations
        )
        return route

    def qualified_handler(self, fact: RouteFact) -> str:
        if fact.owner and fact.handler and fact.handler != "lambda":
            return f"{fact.owner}{self.handler_separator}{fact.handler}"
        return fact.handler or "lambda"

    def path_parameter(self, name: str, handler: Optional[MethodDecl], unit: SourceUnit) -> Parameter:
        schema = Schema(type="string")
        if handler is not None:
            for param in handler.params:
                if _marker_name(param, _PATH_MARKERS) == name or param.name == name:
                    typed = self.schema_for_type(self.path_type(param), unit)
                    if typed.type and typed.type not in ("object", "array"):
                        schema = typed
                    break
        return Parameter(name=name, in_="path", required=True, schema=schema)

    def query_parameter(self, param: Param, unit: SourceUnit) -> Parameter:
        schema = self.schema_for_type(param.type, unit) if param.type else Schema(type="string")
        optional = self.backend.classify(param.type).optional if param.type else False
        return Parameter(
            name=_marker_name(param, self.query_markers) or param.name,
            in_="query",
            required=param.required and not optional,
            schema=schema,
        )

    def response_schema(self, handler: MethodDecl, unit: SourceUnit) -> Optional[Schema]:
        if not handler.return_type:
            return None
        if self.backend.map_type(handler.return_type) == VOID_MAPPING:
            return None
        return self.schema_for_type(handler.return_type, unit)

    # Parameter classification hooks ------------------------------------

    def is_path_param(self, param: Param) -> bool:
        return any(annotation.name in _PATH_MARKERS for annotation in param.annotations)

    def is_body_param(self, param: Param, fact: RouteFact, unit: SourceUnit) -> bool:
        return _has_marker(param, self.body_markers)

    def is_query_param(self, param: Param, fact: RouteFact, unit: SourceUnit) -> bool:
        return _has_marker(param, self.query_markers)

    def body_type(self, param: Param) -> str:
        return param.type

    def path_type(self, param: Param) -> str:
        return param.type

    # ------------------------------------------------------------------
    # Schemas
    # ------------------------------------------------------------------

    def build_schemas(self, unit: SourceUnit) -> List[Schema]:
        return [self.schema_from_decl(decl, unit) for decl in unit.types if self.include_type(decl)]

    def include_type(self, decl: TypeDecl) -> bool:
        """Data-carrying declarations become schemas; private names only on request."""
        if decl.name.startswith("_") and not self.include_private:
            return False
        return bool(decl.fields) or decl.kind == "enum"

    def schema_from_decl(self, decl: TypeDecl, unit: SourceUnit) -> Schema:
        if decl.kind == "enum":
            values = [
                unquote(item.default) if item.default and is_string_literal(item.default) else item.name
                for item in decl.fields
            ]
            return Schema(title=decl.name, type="string", enum=values)
        schema = Schema(title=decl.name, type="object")
        for item in decl.fields:
            key = item.alias or item.name
            schema.properties[key] = self.schema_for_type(item.type, unit) if item.type else Schema(type="string")
            if not item.optional:
                schema.required.append(key)
        return schema

    def schema_for_type(self, raw: str, unit: Optional[SourceUnit] = None, depth: int = 0) -> Schema:
        """Build a schema for a source type string, referencing same-file declarations."""
        text = (raw or "").strip()
        if not text or depth > _MAX_DEPTH:
            return Schema(type="object")
        types = self.backend.types
        shape = self.backend.classify(text)
        if shape.kind == TypeKind.OPTIONAL:
            inner, _ = types.strip_optional(types.clean(text))
            schema = self.schema_for_type(inner, unit, depth + 1)
            schema.nullable = True
            return schema
        if shape.kind == TypeKind.SEQUENCE:
            return Schema(type="array", items=self.schema_for_type(shape.element_type, unit, depth + 1))
        if shape.kind == TypeKind.MAP:
            return Schema(
                type="object",
                additional_properties=self.schema_for_type(shape.element_type, unit, depth + 1),
            )
        type_, format_ = self.backend.map_type(text)
        if shape.kind == TypeKind.AGGREGATE:
            cleaned = types.clean(text)
            for prefix in types.wrappers:
                if cleaned.startswith(prefix):
                    inner = types.unwrap(cleaned, prefix)
                    return self.schema_for_type(_first_type_argument(inner), unit, depth + 1)
            name = _bare_name(cleaned)
            if unit is not None and unit.find_type(name) is not None:
                return Schema(ref=SCHEMA_REF_PREFIX + name)
            if (type_, format_) != ("object", ""):
                return Schema(type=type_, format=format_)
            return Schema(type="object", title=name or None)
        if (type_, format_) == VOID_MAPPING:
            return Schema(type="object")
        return Schema(type=type_, format=format_)


def _has_marker(param: Param, markers: Sequence[str]) -> bool:
    return any(annotation.name.rpartition(".")[2] in markers for annotation in param.annotations)


def _marker_name(param: Param, markers: Sequence[str]) -> Optional[str]:
    for annotation in param.annotations:
        if annotation.name.rpartition(".")[2] in markers:
            return annotation.string_arg("name", "value", "Name", "alias")
    return None


def _first_type_argument(inner: str) -> str:
    parts = split_top_level(inner)
    return parts[0] if parts else inner


def _bare_name(text: str) -> str:
    """``models.User`` / ``App\\Models\\User`` / ``List<User>`` base -> ``User``."""
    base = re.split(r"[<\[(]", text, maxsplit=1)[0].strip()
    return re.split(r"[.:\\]+", base)[-1] if base else ""


__all__ = ["FrameworkPlugin", "SCHEMA_REF_PREFIX", "infer_tags", "operation_id"]
