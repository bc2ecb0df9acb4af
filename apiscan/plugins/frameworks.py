"""Per-language framework plugins."""

from __future__ import annotations

import posixpath
from typing import Dict, List, Mapping, Sequence, Tuple

from ..models import Param, RouteFact, SourceFile, SourceUnit, TypeKind
from ..parsers.scala import MOUNT, is_play_routes
from ..paths import join_paths
from .base import FrameworkPlugin


class CSharpPlugin(FrameworkPlugin):
    """ASP.NET controllers, minimal APIs and FastEndpoints."""

    language = "csharp"
    query_markers = ("FromQuery",)


class JavaPlugin(FrameworkPlugin):
    language = "java"
    query_markers = ("RequestParam", "QueryParam", "QueryValue")


class KotlinPlugin(FrameworkPlugin):
    language = "kotlin"
    query_markers = ("RequestParam", "QueryParam", "QueryValue")


class ScalaPlugin(FrameworkPlugin):
    """Play and Tapir; ``->`` includes in routes files are resolved across files."""

    language = "scala"

    def prepare(self, files: Sequence[SourceFile]) -> Dict[str, str]:
        routes_files = [file for file in files if is_play_routes(file.path)]
        return _mount_prefixes(list(self._parse_all(routes_files)))

    def prefix_for(self, unit: SourceUnit, prefixes: Mapping[str, str]) -> str:
        return prefixes.get(_basename(unit.path), "")


class SwiftPlugin(FrameworkPlugin):
    language = "swift"


class PhpPlugin(FrameworkPlugin):
    """Laravel, Slim and Symfony; FormRequest subclasses carry the request body."""

    language = "php"
    handler_separator = "@"
    body_markers = ("MapRequestPayload",)
    query_markers = ("MapQueryString", "MapQueryParameter")

    def is_body_param(self, param: Param, fact: RouteFact, unit: SourceUnit) -> bool:
        raw_type = param.type.lstrip("?\\").rpartition("\\")[2]
        if raw_type.endswith("Request") and raw_type not in ("Request", "ServerRequestInterface"):
            return True
        return super().is_body_param(param, fact, unit)


class RubyPlugin(FrameworkPlugin):
    language = "ruby"
    handler_separator = "#"


class ElixirPlugin(FrameworkPlugin):
    language = "elixir"


class GleamPlugin(FrameworkPlugin):
    language = "gleam"


class HaskellPlugin(FrameworkPlugin):
    language = "haskell"


class CppPlugin(FrameworkPlugin):
    """Drogon, Crow and Oat++ (``PATH``/``QUERY``/``BODY_DTO`` endpoint parameters)."""

    language = "cpp"
    handler_separator = "::"


class PythonPlugin(FrameworkPlugin):
    """FastAPI infers query parameters and bodies from annotations."""

    language = "python"
    _FRAMEWORK_TYPES = (
        "Request", "Response", "BackgroundTasks", "WebSocket", "HTTPConnection", "Session", "AsyncSession",
        "HttpRequest",
    )
    _NOT_QUERY = ("Depends", "Security", "Header", "Cookie", "Form", "File")

    def is_body_param(self, param: Param, fact: RouteFact, unit: SourceUnit) -> bool:
        if super().is_body_param(param, fact, unit):
            return True
        if fact.framework != "fastapi" or not param.type or self._is_framework_param(param):
            return False
        return self.backend.classify(param.type).kind == TypeKind.AGGREGATE

    def is_query_param(self, param: Param, fact: RouteFact, unit: SourceUnit) -> bool:
        if super().is_query_param(param, fact, unit):
            return True
        if fact.framework != "fastapi" or self._is_framework_param(param):
            return False
        shape = self.backend.classify(param.type)
        return shape.kind in (TypeKind.PRIMITIVE, TypeKind.TIME, TypeKind.SEQUENCE, TypeKind.OPTIONAL) or not param.type

    def _is_framework_param(self, param: Param) -> bool:
        if any(annotation.name.rpartition(".")[2] in self._NOT_QUERY for annotation in param.annotations):
            return True
        return param.type.rpartition(".")[2] in self._FRAMEWORK_TYPES


class TypeScriptPlugin(FrameworkPlugin):
    language = "typescript"


class RustPlugin(FrameworkPlugin):
    """Extractor-typed handler parameters: ``Json<T>`` bodies, ``Path<T>`` captures."""

    language = "rust"

    def is_body_param(self, param: Param, fact: RouteFact, unit: SourceUnit) -> bool:
        return _extractor(param.type) in ("Json", "Form")

    def is_path_param(self, param: Param) -> bool:
        return _extractor(param.type) == "Path"

    def is_query_param(self, param: Param, fact: RouteFact, unit: SourceUnit) -> bool:
        if _extractor(param.type):
            return False
        shape = self.backend.classify(param.type)
        return fact.framework == "rocket" and shape.kind in (TypeKind.PRIMITIVE, TypeKind.OPTIONAL)

    def body_type(self, param: Param) -> str:
        return _extractor_inner(param.type)

    def path_type(self, param: Param) -> str:
        return _extractor_inner(param.type) if _extractor(param.type) == "Path" else param.type


class GoPlugin(FrameworkPlugin):
    language = "go"


def _extractor(raw_type: str) -> str:
    base = raw_type.split("<", 1)[0].rpartition("::")[2].strip()
    return base if base in ("Json", "Form", "Path", "Query", "State", "Extension") and "<" in raw_type else ""


def _extractor_inner(raw_type: str) -> str:
    start = raw_type.find("<")
    end = raw_type.rfind(">")
    return raw_type[start + 1 : end].strip() if 0 <= start < end else raw_type


def _basename(path: str) -> str:
    return posixpath.basename(path.replace("\\", "/"))


def _mount_prefixes(units: List[SourceUnit]) -> Dict[str, str]:
    """Map routes file names to the prefix under which a ``->`` line includes them.

    ``-> /api api.Routes`` includes the ``api.routes`` file.
    """
    edges: List[Tuple[str, str, str]] = []
    for unit in units:
        parent = _basename(unit.path)
        for fact in unit.routes:
            if fact.method == MOUNT:
                package, _, _ = fact.handler.rpartition(".")
                edges.append((parent, f"{package}.routes" if package else "routes", fact.path))
    prefixes: Dict[str, str] = {}
    for _ in range(len(edges)):
        changed = False
        for parent, child, path in edges:
            prefix = join_paths(prefixes.get(parent, ""), path)
            if prefixes.get(child) != prefix and child != parent:
                prefixes[child] = prefix
                changed = True
        if not changed:
            break
    return prefixes


PLUGINS = {
    plugin.language: plugin
    for plugin in (
        CSharpPlugin,
        JavaPlugin,
        KotlinPlugin,
        ScalaPlugin,
        SwiftPlugin,
        PhpPlugin,
        RubyPlugin,
        ElixirPlugin,
        GleamPlugin,
        HaskellPlugin,
        CppPlugin,
        PythonPlugin,
        TypeScriptPlugin,
        RustPlugin,
        GoPlugin,
    )
}

__all__ = ["PLUGINS"] + [plugin.__name__ for plugin in PLUGINS.values()]
