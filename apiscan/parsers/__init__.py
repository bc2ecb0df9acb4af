"""Language backends and the registry that dispatches on language tags."""

from __future__ import annotations

from functools import lru_cache
from importlib import metadata
from typing import Callable, Dict, Iterable, List, Optional

from ..errors import UnsupportedLanguageError
from ..logging import get_logger
from .base import Backend, RegexBackend, StructuralBackend
from .cpp import CppBackend
from .csharp import CSharpBackend
from .elixir import ElixirBackend
from .gleam import GleamBackend
from .golang import GoBackend
from .haskell import HaskellBackend
from .java import JavaBackend
from .kotlin import KotlinBackend
from .php import PhpBackend
from .python import PythonBackend
from .ruby import RubyBackend
from .rust import RustBackend
from .scala import ScalaBackend, is_play_routes
from .swift import SwiftBackend
from .treesitter import TREE_SITTER_AVAILABLE
from .typescript import TypeScriptBackend

logger = get_logger("parsers")

_ENTRY_POINT_GROUP = "apiscan.backends"

_BUILTIN_BACKENDS: Dict[str, Callable[[], Backend]] = {
    "csharp": CSharpBackend,
    "java": JavaBackend,
    "kotlin": KotlinBackend,
    "scala": ScalaBackend,
    "swift": SwiftBackend,
    "php": PhpBackend,
    "ruby": RubyBackend,
    "elixir": ElixirBackend,
    "gleam": GleamBackend,
    "haskell": HaskellBackend,
    "cpp": CppBackend,
    "python": PythonBackend,
    "typescript": TypeScriptBackend,
    "rust": RustBackend,
    "go": GoBackend,
}

ALIASES: Dict[str, str] = {
    "c#": "csharp",
    "cs": "csharp",
    "dotnet": "csharp",
    "c++": "cpp",
    "cxx": "cpp",
    "ts": "typescript",
    "tsx": "typescript",
    "javascript": "typescript",
    "js": "typescript",
    "node": "typescript",
    "golang": "go",
    "py": "python",
    "rb": "ruby",
    "rs": "rust",
    "kt": "kotlin",
    "ex": "elixir",
    "hs": "haskell",
}


def canonical_language(language: str) -> str:
    """Normalize a language tag: lowercase, aliases resolved."""
    key = (language or "").strip().lower()
    return ALIASES.get(key, key)


def _registry() -> Dict[str, Callable[[], Backend]]:
    factories: Dict[str, Callable[[], Backend]] = dict(_BUILTIN_BACKENDS)
    for entry in _iter_entry_points():
        name = canonical_language(entry.name)
        if name in factories:
            continue
        try:
            loaded = entry.load()
        except Exception as exc:  # pragma: no cover - third-party plugin failure
            logger.warning("Failed to load backend entry point '%s': %s", entry.name, exc)
            continue
        factories[name] = _factory_for(loaded)
    return factories


def _factory_for(obj: object) -> Callable[[], Backend]:
    def _factory() -> Backend:
        if isinstance(obj, Backend):
            return obj
        instance = obj() if callable(obj) else None
        if not isinstance(instance, Backend):
            raise TypeError("Backend entry point must be a Backend subclass or factory")
        return instance

    return _factory


def get_backend(language: str) -> Backend:
    """Return the shared backend instance for ``language``.

    Backends hold no per-call state, so one instance per language serves
    every worker thread. Aliases share the instance of their canonical tag.
    """
    backend = _shared_backend(canonical_language(language))
    if backend is None:
        raise UnsupportedLanguageError(language)
    return backend


@lru_cache(maxsize=None)
def _shared_backend(name: str) -> Optional[Backend]:
    factory = _registry().get(name)
    return factory() if factory is not None else None


def available_languages() -> List[str]:
    return sorted(_registry())


def language_for_path(path: str) -> Optional[str]:
    """Return the language tag whose backend claims ``path``'s suffix."""
    if is_play_routes(path):
        return "scala"
    lowered = path.lower()
    for name, factory in _BUILTIN_BACKENDS.items():
        extensions = getattr(factory, "extensions", ())
        if lowered.endswith(tuple(extensions)):
            return name
    return None


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    entry_points = metadata.entry_points()
    if hasattr(entry_points, "select"):
        return entry_points.select(group=_ENTRY_POINT_GROUP)
    return entry_points.get(_ENTRY_POINT_GROUP, [])  # type: ignore[attr-defined]


__all__ = [
    "ALIASES",
    "Backend",
    "RegexBackend",
    "StructuralBackend",
    "TREE_SITTER_AVAILABLE",
    "available_languages",
    "canonical_language",
    "get_backend",
    "language_for_path",
]
